"""Finance business rules: typed conditions/actions and ordered evaluation."""

from .engine import evaluate_rule, evaluate_rules
from .models import (
    AmountGreaterThan,
    AmountLessThan,
    Condition,
    DescriptionContainsAny,
    FinanceRule,
    RuleActions,
    RuleContext,
    RuleResult,
    RuleScope,
    SenderDomainIn,
    SubjectContainsAny,
    conditions_to_dict,
    parse_conditions,
)

__all__ = [
    "AmountGreaterThan",
    "AmountLessThan",
    "Condition",
    "DescriptionContainsAny",
    "FinanceRule",
    "RuleActions",
    "RuleContext",
    "RuleResult",
    "RuleScope",
    "SenderDomainIn",
    "SubjectContainsAny",
    "conditions_to_dict",
    "evaluate_rule",
    "evaluate_rules",
    "parse_conditions",
]
