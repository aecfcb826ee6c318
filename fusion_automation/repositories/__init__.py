"""Repositories for data access operations."""

from fusion_automation.repositories.automation_repository import AutomationRepository
