"""
Ordered rule evaluation.

Rules run in ascending priority. Within a rule every present condition must
hold; the first failing condition rejects the rule. A matched rule flagged
stop_processing hides every later rule in the same scope.
"""

from finance_ingest.core.logging import get_logger
from finance_ingest.rules.models import (
    DEFAULT_CONFIDENCE,
    FinanceRule,
    RuleContext,
    RuleResult,
)

log = get_logger(__name__)


def evaluate_rule(rule: FinanceRule, context: RuleContext) -> RuleResult:
    """
    Evaluate a single rule against a context.

    Args:
        rule: Rule to evaluate
        context: Message facts

    Returns:
        RuleResult; reasons list the condition families that matched
    """
    reasons: list[str] = []
    for condition in rule.conditions:
        if not condition.matches(context):
            return RuleResult(rule_id=rule.id, rule_name=rule.name, matched=False)
        reasons.append(condition.reason)

    return RuleResult(
        rule_id=rule.id,
        rule_name=rule.name,
        matched=True,
        reasons=reasons,
        actions=rule.actions,
        confidence=rule.actions.confidence or DEFAULT_CONFIDENCE,
    )


def evaluate_rules(rules: list[FinanceRule], context: RuleContext) -> list[RuleResult]:
    """
    Evaluate rules in priority order and return the matches.

    Disabled rules are skipped. Ties keep their original order.
    """
    ordered = sorted((rule for rule in rules if rule.enabled), key=lambda r: r.sort_priority)
    matched: list[RuleResult] = []
    for rule in ordered:
        result = evaluate_rule(rule, context)
        if not result.matched:
            continue
        matched.append(result)
        if rule.stop_processing:
            log.debug("rule_stopped_processing", rule=rule.name, scope=rule.scope.value)
            break
    return matched
