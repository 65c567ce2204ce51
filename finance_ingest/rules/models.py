"""
Finance rule data structures.

Conditions and actions are stored as JSON documents but handled here as a
closed set of typed variants. Every condition kind knows its storage key,
the reason tag it contributes on match, and how to test a RuleContext.
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from finance_ingest.core.logging import get_logger

log = get_logger(__name__)

DEFAULT_CONFIDENCE = 0.9
DEFAULT_PRIORITY = 999


class RuleScope(str, Enum):
    """Named buckets of rules, each evaluated independently."""

    EMAIL = "email"
    TRANSACTION = "transaction"
    MATCHING = "matching"
    CATEGORISATION = "categorisation"
    APPROVAL = "approval"


@dataclass
class RuleContext:
    """Facts a rule is evaluated against."""

    subject: str = ""
    body_excerpt: str = ""
    from_address: str = ""
    amount: float | None = None
    description_raw: str = ""

    @property
    def source_text(self) -> str:
        """Lower-cased text searched by the *ContainsAny conditions."""
        return f"{self.subject} {self.description_raw} {self.body_excerpt}".lower()


# Conditions


class Condition(ABC):
    """A single predicate family inside a rule."""

    key: ClassVar[str]
    reason: ClassVar[str]

    @abstractmethod
    def matches(self, context: RuleContext) -> bool:
        pass

    @abstractmethod
    def to_value(self) -> Any:
        """Value stored under `key` in the conditions document."""
        pass


@dataclass(frozen=True)
class SubjectContainsAny(Condition):
    terms: tuple[str, ...]

    key: ClassVar[str] = "subjectContainsAny"
    reason: ClassVar[str] = "subject_contains_any"

    def matches(self, context: RuleContext) -> bool:
        text = context.source_text
        return any(term.lower() in text for term in self.terms)

    def to_value(self) -> list[str]:
        return list(self.terms)


@dataclass(frozen=True)
class SenderDomainIn(Condition):
    domains: tuple[str, ...]

    key: ClassVar[str] = "senderDomainIn"
    reason: ClassVar[str] = "sender_domain_match"

    def matches(self, context: RuleContext) -> bool:
        address = (context.from_address or "").lower()
        return any(address.endswith(f"@{domain.lower()}") for domain in self.domains)

    def to_value(self) -> list[str]:
        return list(self.domains)


@dataclass(frozen=True)
class DescriptionContainsAny(Condition):
    terms: tuple[str, ...]

    key: ClassVar[str] = "descriptionContainsAny"
    reason: ClassVar[str] = "description_contains_any"

    def matches(self, context: RuleContext) -> bool:
        text = context.source_text
        return any(term.lower() in text for term in self.terms)

    def to_value(self) -> list[str]:
        return list(self.terms)


@dataclass(frozen=True)
class AmountLessThan(Condition):
    threshold: float

    key: ClassVar[str] = "amountLessThan"
    reason: ClassVar[str] = "amount_less_than"

    def matches(self, context: RuleContext) -> bool:
        return (context.amount or 0) < self.threshold

    def to_value(self) -> float:
        return self.threshold


@dataclass(frozen=True)
class AmountGreaterThan(Condition):
    threshold: float

    key: ClassVar[str] = "amountGreaterThan"
    reason: ClassVar[str] = "amount_greater_than"

    def matches(self, context: RuleContext) -> bool:
        return (context.amount or 0) > self.threshold

    def to_value(self) -> float:
        return self.threshold


# Evaluation order; also the order reasons are reported in
CONDITION_TYPES: tuple[type[Condition], ...] = (
    SubjectContainsAny,
    SenderDomainIn,
    DescriptionContainsAny,
    AmountLessThan,
    AmountGreaterThan,
)

_TERM_CONDITIONS = {SubjectContainsAny, SenderDomainIn, DescriptionContainsAny}


def _to_threshold(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        # NaN never compares true, so the rule can no longer match
        log.warning("invalid_rule_threshold", condition=key, value=value)
        return math.nan


def parse_conditions(data: dict[str, Any] | None) -> list[Condition]:
    """
    Build typed conditions from a stored conditions document.

    Empty term lists and null thresholds count as absent. Unknown keys are
    ignored.
    """
    data = data or {}
    conditions: list[Condition] = []
    for condition_type in CONDITION_TYPES:
        if condition_type.key not in data:
            continue
        value = data[condition_type.key]
        if condition_type in _TERM_CONDITIONS:
            if not isinstance(value, list) or not value:
                continue
            conditions.append(condition_type(tuple(str(v) for v in value)))
        elif value is not None:
            conditions.append(condition_type(_to_threshold(condition_type.key, value)))

    unknown = set(data) - {t.key for t in CONDITION_TYPES}
    if unknown:
        log.debug("unknown_rule_conditions_ignored", keys=sorted(unknown))
    return conditions


def conditions_to_dict(conditions: list[Condition]) -> dict[str, Any]:
    """Serialize typed conditions back to the stored JSON shape."""
    return {condition.key: condition.to_value() for condition in conditions}


# Actions


@dataclass
class RuleActions:
    """Effects a matched rule asks for."""

    set_category_name: str | None = None
    auto_approve: bool = False
    confidence: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RuleActions":
        """Create RuleActions from a stored actions document."""
        data = dict(data or {})
        category = data.pop("setCategoryName", None)
        auto_approve = data.pop("autoApprove", False)
        confidence = data.pop("confidence", None)
        try:
            confidence = float(confidence) if confidence is not None else None
        except (TypeError, ValueError):
            confidence = None
        return cls(
            set_category_name=str(category) if category else None,
            auto_approve=bool(auto_approve),
            confidence=confidence,
            extra=data,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON storage."""
        data = dict(self.extra)
        if self.set_category_name:
            data["setCategoryName"] = self.set_category_name
        if self.auto_approve:
            data["autoApprove"] = True
        if self.confidence is not None:
            data["confidence"] = self.confidence
        return data


# Rules and results


def _json_field(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        return json.loads(value) if value else {}
    return value or {}


@dataclass
class FinanceRule:
    """An ordered business rule within a scope."""

    name: str
    scope: RuleScope
    id: int | None = None
    priority: int | None = 100
    enabled: bool = True
    stop_processing: bool = False
    conditions: list[Condition] = field(default_factory=list)
    actions: RuleActions = field(default_factory=RuleActions)

    @property
    def sort_priority(self) -> int:
        return self.priority if self.priority is not None else DEFAULT_PRIORITY

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "FinanceRule":
        """Create FinanceRule from a database row (JSON columns may be str)."""
        return cls(
            id=row.get("id"),
            name=row.get("name") or "rule",
            scope=RuleScope(row["scope"]),
            priority=row.get("priority"),
            enabled=bool(row.get("enabled", True)),
            stop_processing=bool(row.get("stop_processing", False)),
            conditions=parse_conditions(_json_field(row.get("conditions"))),
            actions=RuleActions.from_dict(_json_field(row.get("actions"))),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FinanceRule":
        """Create FinanceRule from a camelCase definition (seed data, API)."""
        return cls(
            name=data["name"],
            scope=RuleScope(data["scope"]),
            priority=data.get("priority"),
            enabled=data.get("enabled", True),
            stop_processing=data.get("stopProcessing", False),
            conditions=parse_conditions(data.get("conditions")),
            actions=RuleActions.from_dict(data.get("actions")),
        )


@dataclass
class RuleResult:
    """Outcome of evaluating one rule."""

    rule_name: str
    matched: bool
    rule_id: int | None = None
    reasons: list[str] = field(default_factory=list)
    actions: RuleActions = field(default_factory=RuleActions)
    confidence: float | None = None
