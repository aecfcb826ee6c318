"""Automation service for rule management."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from fusion_automation.core.automation.errors import RuleValidationError
from fusion_automation.core.automation.rule_parser import RuleParser
from fusion_automation.models.automation import AutomationRuleRecord
from fusion_automation.repositories.automation_repository import AutomationRepository
from fusion_automation.schemas.automation import AutomationRule

logger = logging.getLogger(__name__)


class AutomationService:
    """Service for automation rule management."""

    def __init__(self, db: Session):
        """Initialize service with database session."""
        self.db = db
        self.repository = AutomationRepository(db)

    def create_rule(
        self, rule_definition: dict[str, Any], description: str | None = None
    ) -> tuple[AutomationRuleRecord, AutomationRule]:
        """Validate and persist a new automation rule.

        Args:
            rule_definition: Raw rule definition
            description: Rule description (optional)

        Returns:
            Tuple of (persisted record, validated rule)

        Raises:
            RuleValidationError: If the definition is invalid
        """
        rule = RuleParser.parse(rule_definition)
        record = self.repository.create_rule(
            {
                "id": rule.id,
                "name": rule.name,
                "description": description,
                "enabled": rule.enabled,
                "location_scope_id": rule.location_scope_id,
                "definition": rule.definition(),
            }
        )
        logger.info(f"Created rule '{rule.name}' (ID: {record.id})")
        return record, rule

    def get_rule(self, rule_id: UUID) -> AutomationRuleRecord | None:
        """Get a rule by ID.

        Args:
            rule_id: Rule ID

        Returns:
            Rule record or None if not found
        """
        return self.repository.get_rule_by_id(rule_id)

    def get_all_rules(
        self, enabled_only: bool = False, skip: int = 0, limit: int = 100
    ) -> list[AutomationRuleRecord]:
        """Get all rules.

        Args:
            enabled_only: Only return enabled rules
            skip: Pagination offset
            limit: Pagination limit

        Returns:
            List of rule records
        """
        return self.repository.get_all_rules(enabled_only, skip, limit)

    def count_rules(self, enabled_only: bool = False) -> int:
        return self.repository.count_all_rules(enabled_only)

    def update_rule(
        self,
        rule_id: UUID,
        rule_definition: dict[str, Any],
        description: str | None = None,
    ) -> tuple[AutomationRuleRecord, AutomationRule] | None:
        """Replace a rule's definition.

        Args:
            rule_id: Rule ID
            rule_definition: New raw rule definition
            description: New description (optional)

        Returns:
            Tuple of (updated record, validated rule), or None if not found

        Raises:
            RuleValidationError: If the definition is invalid
        """
        if self.repository.get_rule_by_id(rule_id) is None:
            return None

        rule = RuleParser.parse(rule_definition, rule_id=rule_id)
        update_data: dict[str, Any] = {
            "name": rule.name,
            "enabled": rule.enabled,
            "location_scope_id": rule.location_scope_id,
            "definition": rule.definition(),
            "registration_error": None,
        }
        if description is not None:
            update_data["description"] = description

        record = self.repository.update_rule(rule_id, update_data)
        logger.info(f"Updated rule {rule_id}")
        return record, rule

    def delete_rule(self, rule_id: UUID) -> bool:
        """Delete a rule and its execution history.

        Args:
            rule_id: Rule ID

        Returns:
            True if deleted, False if not found
        """
        result = self.repository.delete_rule(rule_id)
        if result:
            logger.info(f"Deleted rule {rule_id}")
        return result

    def load_enabled_rules(self) -> list[AutomationRule]:
        """Load every enabled rule for registration at startup.

        Records whose stored definition no longer validates are skipped and
        their error is persisted.
        """
        rules = []
        for record in self.repository.get_all_rules(enabled_only=True, limit=None):
            try:
                rules.append(RuleParser.from_record(record))
            except RuleValidationError as e:
                logger.error(f"Stored rule {record.id} is invalid, not loading: {e}")
                self.record_registration_state(record.id, e.message)
        return rules

    def record_registration_state(self, rule_id: UUID, error: str | None) -> None:
        """Persist the outcome of registering a rule (None clears the error)."""
        record = self.repository.get_rule_by_id(rule_id)
        if record is None or record.registration_error == error:
            return
        self.repository.update_rule(rule_id, {"registration_error": error})
