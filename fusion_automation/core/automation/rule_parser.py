"""Rule parser for automation rules."""

import logging
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from fusion_automation.core.automation.errors import RuleValidationError
from fusion_automation.models.automation import AutomationRuleRecord
from fusion_automation.schemas.automation import AutomationRule

logger = logging.getLogger(__name__)


def _format_errors(error: ValidationError) -> list[dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in item["loc"]) or "rule",
            "message": item["msg"],
        }
        for item in error.errors()
    ]


class RuleParser:
    """Parser turning raw rule definitions into immutable rules."""

    @staticmethod
    def parse(rule_definition: dict[str, Any], rule_id: UUID | None = None) -> AutomationRule:
        """Parse a rule definition.

        Args:
            rule_definition: Rule definition dictionary
            rule_id: Identity to bind the rule to (generated if not provided).
                An "id" key in the definition is ignored.

        Returns:
            Validated AutomationRule

        Raises:
            RuleValidationError: If rule definition is invalid
        """
        if not isinstance(rule_definition, dict):
            raise RuleValidationError("Rule definition must be an object")

        data = {
            key: value
            for key, value in rule_definition.items()
            if key not in ("id", "description")
        }
        if rule_id is not None:
            data["id"] = rule_id
        try:
            return AutomationRule.model_validate(data)
        except ValidationError as e:
            errors = _format_errors(e)
            summary = "; ".join(f"{item['field']}: {item['message']}" for item in errors[:3])
            raise RuleValidationError(
                f"Invalid rule definition: {summary}", details={"errors": errors}
            ) from e

    @staticmethod
    def from_record(record: AutomationRuleRecord) -> AutomationRule:
        """Rebuild a rule from its persisted record.

        Record columns take precedence over the stored definition.
        """
        definition = dict(record.definition or {})
        definition.update(
            {
                "name": record.name,
                "enabled": record.enabled,
                "location_scope_id": record.location_scope_id,
            }
        )
        return RuleParser.parse(definition, rule_id=record.id)

    @staticmethod
    def validate(rule_definition: dict[str, Any]) -> bool:
        """Validate a rule definition.

        Args:
            rule_definition: Rule definition dictionary

        Returns:
            True if valid, False otherwise
        """
        try:
            RuleParser.parse(rule_definition)
            return True
        except RuleValidationError as e:
            logger.warning(f"Invalid rule definition: {e}")
            return False
