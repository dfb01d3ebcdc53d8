"""Predicate evaluation against attribute values.

Used by preference gating (category, sender, quiet-hour days) and by dynamic
contact groups. A rule that cannot be evaluated, whether because the operator
is unknown or the operand types do not compare, is false and is logged. It
never raises.
"""

import operator
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from typing import Any

import structlog

from core.clock import ensure_utc
from domain.entities.contact_group import ContactGroup, GroupType

logger = structlog.get_logger()

_MISSING = object()

OPERATOR_ALIASES: dict[str, str] = {
    "=": "equals",
    "==": "equals",
    "eq": "equals",
    "!=": "not_equals",
    "ne": "not_equals",
    ">": "greater_than",
    "gt": "greater_than",
    ">=": "greater_than_or_equal",
    "gte": "greater_than_or_equal",
    "<": "less_than",
    "lt": "less_than",
    "<=": "less_than_or_equal",
    "lte": "less_than_or_equal",
    "not-equals": "not_equals",
    "greater-than": "greater_than",
    "greater-than-or-equal": "greater_than_or_equal",
    "less-than": "less_than",
    "less-than-or-equal": "less_than_or_equal",
    "starts-with": "starts_with",
    "ends-with": "ends_with",
    "not-in": "not_in",
    "is-null": "is_null",
    "is-not-null": "is_not_null",
}


class MalformedRule(Exception):
    """Raised internally when a rule cannot be evaluated."""


def _require_str(value: Any) -> str:
    if not isinstance(value, str):
        raise MalformedRule(f"expected a string, got {type(value).__name__}")
    return value


def _require_collection(value: Any) -> list[Any]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise MalformedRule(f"expected a collection, got {type(value).__name__}")
    return list(value)


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return ensure_utc(datetime(value.year, value.month, value.day))
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _ordered(actual: Any, expected: Any) -> tuple[Any, Any]:
    """Line up operands for an ordered comparison.

    Dates compare with ISO strings by parsing the string side.
    """
    if isinstance(actual, (datetime, date)) or isinstance(expected, (datetime, date)):
        left, right = _as_datetime(actual), _as_datetime(expected)
        if left is None or right is None:
            raise MalformedRule("date comparison with a non-date operand")
        return left, right
    if isinstance(actual, bool) or isinstance(expected, bool):
        raise MalformedRule("booleans are not ordered")
    return actual, expected


def _ordered_check(compare: Callable[[Any, Any], Any]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        left, right = _ordered(actual, expected)
        return bool(compare(left, right))

    return check


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (datetime, date)):
        other = _as_datetime(expected)
        return other is not None and _as_datetime(actual) == other
    return bool(actual == expected)


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": lambda a, e: not _equals(a, e),
    "greater_than": _ordered_check(operator.gt),
    "greater_than_or_equal": _ordered_check(operator.ge),
    "less_than": _ordered_check(operator.lt),
    "less_than_or_equal": _ordered_check(operator.le),
    "contains": lambda a, e: _require_str(e) in _require_str(a),
    "not_contains": lambda a, e: _require_str(e) not in _require_str(a),
    "starts_with": lambda a, e: _require_str(a).startswith(_require_str(e)),
    "ends_with": lambda a, e: _require_str(a).endswith(_require_str(e)),
    "in": lambda a, e: a in _require_collection(e),
    "not_in": lambda a, e: a not in _require_collection(e),
    "is_null": lambda a, e: a is None,
    "is_not_null": lambda a, e: a is not None,
    # Tag operators: actual is the tag list
    "has_tag": lambda a, e: e in _require_collection(a),
    "missing_tag": lambda a, e: e not in _require_collection(a),
    "has_any_tag": lambda a, e: bool(set(_require_collection(a)) & set(_require_collection(e))),
    "has_all_tags": lambda a, e: set(_require_collection(e)) <= set(_require_collection(a)),
}

_NULL_TOLERANT = {"is_null", "is_not_null", "not_equals", "equals"}


def normalize_operator(operator: str) -> str:
    op = operator.strip().lower()
    return OPERATOR_ALIASES.get(op, op)


class AttributeGate:
    """Evaluates ``(actual, operator, expected)`` rules."""

    def evaluate(self, actual: Any, operator: str, expected: Any = None) -> bool:
        try:
            op = normalize_operator(operator)
            check = _OPERATORS.get(op)
            if check is None:
                raise MalformedRule(f"unknown operator {operator!r}")
            if actual is None and op not in _NULL_TOLERANT:
                return False
            return bool(check(actual, expected))
        except (MalformedRule, TypeError, ValueError, AttributeError) as exc:
            logger.warning(
                "attribute_rule_malformed",
                operator=operator,
                error=str(exc),
            )
            return False

    def evaluate_rule(self, attributes: Mapping[str, Any], rule: Mapping[str, Any]) -> bool:
        """Evaluate one ``{"field", "operator", "value"}`` rule against an attribute bag.

        ``custom.<name>`` reads from the nested ``custom`` mapping.
        """
        field_name = rule.get("field")
        operator = rule.get("operator") or "equals"
        if not field_name or not isinstance(field_name, str):
            logger.warning("attribute_rule_malformed", rule=dict(rule), error="missing field")
            return False
        actual = resolve_field(attributes, field_name)
        if actual is _MISSING:
            actual = None
        return self.evaluate(actual, operator, rule.get("value"))

    def evaluate_all(
        self,
        attributes: Mapping[str, Any],
        criteria: Iterable[Mapping[str, Any]] | Mapping[str, Any] | None,
    ) -> bool:
        """Combine rules; a bare list is AND-ed. An empty rule set matches nothing."""
        if not criteria:
            return False
        if isinstance(criteria, Mapping):
            combinator = str(criteria.get("operator") or "AND").upper()
            rules = list(criteria.get("rules") or [])
        else:
            combinator = "AND"
            rules = list(criteria)
        if not rules:
            return False
        results = (self.evaluate_rule(attributes, rule) for rule in rules)
        if combinator == "OR":
            return any(results)
        return all(results)

    def matches_group(self, group: ContactGroup, attributes: Mapping[str, Any]) -> bool:
        """Whether a contact's attributes place it in a dynamic group."""
        if group.group_type != GroupType.DYNAMIC:
            return False
        return self.evaluate_all(attributes, group.criteria)


def resolve_field(attributes: Mapping[str, Any], field_name: str) -> Any:
    if field_name.startswith("custom."):
        custom = attributes.get("custom") or {}
        if not isinstance(custom, Mapping):
            return _MISSING
        return custom.get(field_name[len("custom."):], _MISSING)
    return attributes.get(field_name, _MISSING)


attribute_gate = AttributeGate()
