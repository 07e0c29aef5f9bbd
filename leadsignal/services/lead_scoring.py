import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from leadsignal.core.constants import (
    MAX_MULTIPLIER,
    MAX_SCORE,
    MIN_MULTIPLIER,
    MIN_SCORE,
)

logger = logging.getLogger(__name__)


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IN_LIST = "in_list"
    NOT_IN_LIST = "not_in_list"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


_OPERATORS = {op.value: op for op in Operator}


def _as_text(value: Any) -> str:
    """Render a fact the way it is compared in string conditions."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_number(value: Any) -> float:
    """Numeric cast; anything non-numeric becomes NaN, which compares false."""
    if value is None or value == "":
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _split_list(operand: str) -> List[str]:
    return [item.strip().lower() for item in operand.split(",")]


@dataclass(frozen=True)
class Condition:
    """A parsed ``operator:operand`` condition.

    ``operator`` is ``None`` for operators this engine does not know;
    such conditions never match.
    """

    operator: Optional[Operator]
    operand: str
    raw: str

    @classmethod
    def parse(cls, raw: str) -> "Condition":
        name, _, operand = (raw or "").partition(":")
        operator = _OPERATORS.get(name.strip())
        if operator is None:
            logger.warning("Unknown scoring operator in condition %r", raw)
        return cls(operator=operator, operand=operand, raw=raw)

    def evaluate(self, value: Any) -> bool:
        op = self.operator
        if op is None:
            return False

        if op in (Operator.EQUALS, Operator.NOT_EQUALS):
            equal = _as_text(value).lower() == self.operand.lower()
            return equal if op is Operator.EQUALS else not equal

        if op in (Operator.CONTAINS, Operator.NOT_CONTAINS):
            found = self.operand.lower() in _as_text(value).lower()
            return found if op is Operator.CONTAINS else not found

        if op in (
            Operator.GREATER_THAN,
            Operator.LESS_THAN,
            Operator.GREATER_THAN_OR_EQUAL,
            Operator.LESS_THAN_OR_EQUAL,
        ):
            left, right = _as_number(value), _as_number(self.operand)
            if math.isnan(left) or math.isnan(right):
                return False
            if op is Operator.GREATER_THAN:
                return left > right
            if op is Operator.LESS_THAN:
                return left < right
            if op is Operator.GREATER_THAN_OR_EQUAL:
                return left >= right
            return left <= right

        if op in (Operator.IN_LIST, Operator.NOT_IN_LIST):
            member = _as_text(value).lower() in _split_list(self.operand)
            return member if op is Operator.IN_LIST else not member

        if op is Operator.IS_TRUE:
            return value is True or (
                isinstance(value, str) and value.strip().lower() in ("true", "1")
            )

        if op is Operator.IS_FALSE:
            return value is False or (
                isinstance(value, str) and value.strip().lower() in ("false", "0")
            )

        present = value is not None and value != ""
        return present if op is Operator.EXISTS else not present


@dataclass(frozen=True)
class CompiledRule:
    rule_id: str
    field: str
    condition: Condition
    points: int
    order: int = 0

    @classmethod
    def from_model(cls, rule: Any) -> "CompiledRule":
        """Build from a ``ScoringRule`` row (or anything shaped like one)."""
        return cls(
            rule_id=str(rule.id),
            field=rule.field,
            condition=Condition.parse(rule.condition),
            points=int(rule.points),
            order=int(rule.order or 0),
        )


@dataclass(frozen=True)
class AppliedRule:
    rule_id: str
    field: str
    points: int


@dataclass(frozen=True)
class ScoringResult:
    total_points: int
    normalized_score: int
    multiplier: float
    applied_rules: Tuple[AppliedRule, ...]


def compile_rules(rules: Iterable[Any]) -> List[CompiledRule]:
    """Parse stored rules once: drop disabled ones and sort by ``order``."""
    enabled = [r for r in rules if getattr(r, "enabled", True)]
    return sorted(
        (CompiledRule.from_model(r) for r in enabled),
        key=lambda r: r.order,
    )


def score_to_multiplier(score: float) -> float:
    """Map a score onto the 0.1–2.0 value multiplier (2 d.p., half-up)."""
    normalized = Decimal(str(max(MIN_SCORE, min(score, MAX_SCORE))))
    low, high = Decimal(MIN_MULTIPLIER), Decimal(MAX_MULTIPLIER)
    multiplier = low + normalized / Decimal(MAX_SCORE) * (high - low)
    return float(multiplier.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def calculate_score(
    rules: Sequence[CompiledRule],
    facts: Mapping[str, Any],
) -> ScoringResult:
    """Evaluate *rules* against the fact dictionary.

    The total is the sum of the points of every matching rule; the
    normalized score clamps it to 0–100.  Deterministic, no shared state.
    """
    total = 0
    applied: List[AppliedRule] = []

    for rule in rules:
        if rule.condition.evaluate(facts.get(rule.field)):
            total += rule.points
            applied.append(
                AppliedRule(rule_id=rule.rule_id, field=rule.field, points=rule.points)
            )

    normalized = max(MIN_SCORE, min(total, MAX_SCORE))
    return ScoringResult(
        total_points=total,
        normalized_score=normalized,
        multiplier=score_to_multiplier(normalized),
        applied_rules=tuple(applied),
    )
