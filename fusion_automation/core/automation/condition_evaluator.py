"""Condition evaluator for automation rules."""

import logging
import math
from collections.abc import Mapping
from typing import Any

from fusion_automation.core.automation.errors import MissingFactError
from fusion_automation.core.automation.facts import MISSING, lookup_path, resolve_fact
from fusion_automation.schemas.automation import RuleCondition, RuleGroup

logger = logging.getLogger(__name__)


def _strict_equal(left: Any, right: Any) -> bool:
    """Equality that does not treat booleans as numbers."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _as_number(value: Any) -> float | None:
    """Coerce a numeric-looking operand, or return None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _contains(container: Any, item: Any) -> bool | None:
    """Membership for lists and substring for strings; None when not applicable."""
    if isinstance(container, (list, tuple)):
        return any(_strict_equal(element, item) for element in container)
    if isinstance(container, str) and isinstance(item, str):
        return item in container
    return None


class ConditionEvaluator:
    """Evaluator for recursive rule groups over a fact map.

    Evaluation is a pure function of (group, facts): a missing fact, an
    unresolvable path, a type mismatch or an unexpected node shape makes the
    affected leaf false instead of raising.
    """

    def evaluate(self, group: RuleGroup, facts: Mapping[str, Any]) -> bool:
        """Evaluate a rule group against facts.

        Args:
            group: Rule group (all/any)
            facts: Fact map

        Returns:
            True if the group passes, False otherwise
        """
        return self._evaluate_node(group, facts)

    def _evaluate_node(self, node: Any, facts: Mapping[str, Any]) -> bool:
        if isinstance(node, RuleGroup):
            return self._evaluate_group(node, facts)
        if isinstance(node, RuleCondition):
            return self._evaluate_condition(node, facts)
        logger.warning(f"Unexpected rule node of type {type(node).__name__}, treating as false")
        return False

    def _evaluate_group(self, group: RuleGroup, facts: Mapping[str, Any]) -> bool:
        if group.all is not None:
            if not group.all:
                return False
            for child in group.all:
                if not self._evaluate_node(child, facts):
                    return False
            return True
        if group.any:
            for child in group.any:
                if self._evaluate_node(child, facts):
                    return True
        return False

    def _evaluate_condition(self, condition: RuleCondition, facts: Mapping[str, Any]) -> bool:
        """Evaluate a single leaf condition.

        Args:
            condition: Condition with fact, operator, value and optional path
            facts: Fact map

        Returns:
            True if condition is met, False otherwise
        """
        try:
            actual = self._resolve_operand(condition, facts)
        except MissingFactError as e:
            logger.debug(f"{e}, condition evaluates to false")
            return False

        try:
            return self._apply_operator(condition.operator, actual, condition.value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Error evaluating condition on fact '{condition.fact}': {e}")
            return False

    @staticmethod
    def _resolve_operand(condition: RuleCondition, facts: Mapping[str, Any]) -> Any:
        value = resolve_fact(facts, condition.fact)
        if value is MISSING:
            raise MissingFactError(condition.fact)
        if condition.path:
            value = lookup_path(value, condition.path)
            if value is MISSING:
                raise MissingFactError(condition.fact, condition.path)
        return value

    @staticmethod
    def _apply_operator(operator: str, actual: Any, expected: Any) -> bool:
        if operator == "equal":
            return _strict_equal(actual, expected)
        if operator == "notEqual":
            return not _strict_equal(actual, expected)

        if operator in ("lessThan", "lessThanInclusive", "greaterThan", "greaterThanInclusive"):
            left, right = _as_number(actual), _as_number(expected)
            if left is None or right is None:
                return False
            if operator == "lessThan":
                return left < right
            if operator == "lessThanInclusive":
                return left <= right
            if operator == "greaterThan":
                return left > right
            return left >= right

        if operator in ("in", "notIn"):
            if not isinstance(expected, (list, tuple)):
                return False
            found = any(_strict_equal(actual, item) for item in expected)
            return found if operator == "in" else not found

        if operator in ("contains", "doesNotContain"):
            found = _contains(actual, expected)
            if found is None:
                return False
            return found if operator == "contains" else not found

        logger.warning(f"Unknown operator: {operator}")
        return False
