"""
Condition evaluation for trigger conditions and lead filters.

Raw conditions map a field name to either a literal (equality) or an
operator object such as ``{"gte": 50}`` or ``{"contains": "pricing"}``.
They are parsed once into a small AST (``ConditionSet`` -> ``FieldCondition``
-> operator nodes) which is then evaluated against a flat context mapping.

Semantics:
- every field is AND-ed, and several operators on one field are AND-ed
- a field missing from the context (absent or None) never matches, for any
  operator including ``not_in``
- numeric operators coerce both sides to float; anything that does not
  coerce becomes NaN and the comparison fails
"""

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Union

from outreach_engine.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return 0.0
        try:
            return float(stripped)
        except ValueError:
            return math.nan
    return math.nan


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return 'null'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ','.join('' if item is None else _to_text(item) for item in value)
    return str(value)


def _strict_equals(left: Any, right: Any) -> bool:
    # True must not equal 1
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


class Operator:
    name = None

    def __init__(self, operand: Any):
        self.operand = operand

    def evaluate(self, value: Any) -> bool:
        raise NotImplementedError

    def __repr__(self):
        return f'<{type(self).__name__} {self.operand!r}>'


class Equals(Operator):
    name = 'equals'

    def evaluate(self, value):
        return _strict_equals(value, self.operand)


class Contains(Operator):
    name = 'contains'

    def evaluate(self, value):
        return _to_text(self.operand) in _to_text(value)


class _NumericOperator(Operator):
    def evaluate(self, value):
        left = _to_number(value)
        right = _to_number(self.operand)
        if math.isnan(left) or math.isnan(right):
            return False
        return self.compare(left, right)

    def compare(self, left, right):
        raise NotImplementedError


class Gt(_NumericOperator):
    name = 'gt'

    def compare(self, left, right):
        return left > right


class Lt(_NumericOperator):
    name = 'lt'

    def compare(self, left, right):
        return left < right


class Gte(_NumericOperator):
    name = 'gte'

    def compare(self, left, right):
        return left >= right


class Lte(_NumericOperator):
    name = 'lte'

    def compare(self, left, right):
        return left <= right


class In(Operator):
    name = 'in'

    def evaluate(self, value):
        return any(_strict_equals(value, candidate) for candidate in self.operand)


class NotIn(Operator):
    name = 'not_in'

    def evaluate(self, value):
        return not any(_strict_equals(value, candidate) for candidate in self.operand)


OPERATORS = {cls.name: cls for cls in (Equals, Contains, Gt, Lt, Gte, Lte, In, NotIn)}
LIST_OPERATORS = ('in', 'not_in')


class FieldCondition:
    """All operators applied to a single context field."""

    def __init__(self, field: str, operators: List[Operator]):
        self.field = field
        self.operators = operators

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        value = context.get(self.field)
        if value is None:
            return False
        return all(operator.evaluate(value) for operator in self.operators)

    def __repr__(self):
        return f'<FieldCondition {self.field} {self.operators!r}>'


class ConditionSet:
    """Conjunction of field conditions. An empty set matches everything."""

    def __init__(self, fields: Optional[List[FieldCondition]] = None):
        self.fields = fields or []

    def matches(self, context: Optional[Mapping[str, Any]]) -> bool:
        context = context or {}
        return all(condition.evaluate(context) for condition in self.fields)

    def __len__(self):
        return len(self.fields)

    def __repr__(self):
        return f'<ConditionSet {self.fields!r}>'


def _parse_operator_object(field: str, spec: Dict[str, Any], errors: Dict[str, str]) -> List[Operator]:
    if not spec:
        errors[field] = 'operator object must not be empty'
        return []

    operators = []
    for name, operand in spec.items():
        operator_cls = OPERATORS.get(name)
        if operator_cls is None:
            errors[field] = f"unknown operator '{name}'"
            continue
        if name in LIST_OPERATORS and not isinstance(operand, (list, tuple)):
            errors[field] = f"operator '{name}' requires a list"
            continue
        if name in LIST_OPERATORS:
            operand = list(operand)
        operators.append(operator_cls(operand))
    return operators


def parse_conditions(raw: Optional[Mapping[str, Any]], list_means_in: bool = False) -> ConditionSet:
    """Parse a raw conditions mapping into a ConditionSet.

    Raises ValidationError with per-field messages when an operator name or
    operand shape is invalid. With ``list_means_in`` a literal list is read
    as a membership test rather than list equality.
    """
    if raw is None:
        return ConditionSet()
    if isinstance(raw, ConditionSet):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("Conditions must be an object", {'conditions': 'must be an object'})

    errors = {}
    fields = []
    for field, spec in raw.items():
        if isinstance(spec, Mapping):
            operators = _parse_operator_object(field, dict(spec), errors)
        elif list_means_in and isinstance(spec, (list, tuple)):
            operators = [In(list(spec))]
        else:
            operators = [Equals(spec)]
        fields.append(FieldCondition(field, operators))

    if errors:
        raise ValidationError("Invalid conditions", errors)
    return ConditionSet(fields)


def matches(conditions: Union[ConditionSet, Mapping[str, Any], None],
            context: Optional[Mapping[str, Any]],
            list_means_in: bool = False) -> bool:
    """Evaluate raw or parsed conditions against a context mapping."""
    condition_set = parse_conditions(conditions, list_means_in=list_means_in)
    return condition_set.matches(context)
