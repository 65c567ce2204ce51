"""Unit tests for finance rule parsing and evaluation."""

import math

from finance_ingest.rules.engine import evaluate_rule, evaluate_rules
from finance_ingest.rules.models import (
    AmountGreaterThan,
    AmountLessThan,
    DescriptionContainsAny,
    FinanceRule,
    RuleActions,
    RuleContext,
    RuleScope,
    SenderDomainIn,
    SubjectContainsAny,
    conditions_to_dict,
    parse_conditions,
)


def make_rule(name, priority=100, conditions=None, actions=None, stop=False, enabled=True):
    return FinanceRule(
        name=name,
        scope=RuleScope.CATEGORISATION,
        priority=priority,
        enabled=enabled,
        stop_processing=stop,
        conditions=parse_conditions(conditions or {}),
        actions=RuleActions.from_dict(actions or {}),
    )


class TestParseConditions:
    """Tests for condition parsing and serialization."""

    def test_parses_all_condition_kinds_in_order(self):
        """Test every stored key becomes its typed condition."""
        conditions = parse_conditions({
            "amountGreaterThan": 5,
            "senderDomainIn": ["acme.com"],
            "subjectContainsAny": ["invoice"],
            "descriptionContainsAny": ["ebay"],
            "amountLessThan": "100",
        })
        assert [type(c) for c in conditions] == [
            SubjectContainsAny,
            SenderDomainIn,
            DescriptionContainsAny,
            AmountLessThan,
            AmountGreaterThan,
        ]
        assert conditions[3].threshold == 100.0

    def test_empty_lists_are_absent(self):
        """Test empty term lists and null thresholds are dropped."""
        assert parse_conditions({"subjectContainsAny": [], "amountLessThan": None}) == []

    def test_unknown_keys_ignored(self):
        """Test unrecognised condition keys do not raise."""
        assert parse_conditions({"headerMatches": ["x"]}) == []

    def test_invalid_threshold_never_matches(self):
        """Test a non-numeric threshold parses to NaN."""
        [condition] = parse_conditions({"amountGreaterThan": "lots"})
        assert math.isnan(condition.threshold)
        assert condition.matches(RuleContext(amount=1_000_000)) is False

    def test_round_trip_shape(self):
        """Test conditions serialize back to the stored JSON keys."""
        stored = {"subjectContainsAny": ["invoice"], "amountLessThan": 0.0}
        assert conditions_to_dict(parse_conditions(stored)) == stored


class TestRuleActions:
    """Tests for RuleActions."""

    def test_known_and_extra_keys(self):
        """Test typed fields are lifted and unknown keys kept."""
        actions = RuleActions.from_dict({
            "setCategoryName": "Premises: Storage",
            "setVatTreatment": "standard",
            "confidence": 0.95,
        })
        assert actions.set_category_name == "Premises: Storage"
        assert actions.auto_approve is False
        assert actions.confidence == 0.95
        assert actions.extra == {"setVatTreatment": "standard"}
        assert actions.to_dict() == {
            "setVatTreatment": "standard",
            "setCategoryName": "Premises: Storage",
            "confidence": 0.95,
        }


class TestFinanceRuleFromRow:
    """Tests for FinanceRule.from_row."""

    def test_json_columns_as_strings(self):
        """Test JSON columns delivered as text are decoded."""
        rule = FinanceRule.from_row({
            "id": 7,
            "name": "Trusted Supplier Auto-Approve",
            "scope": "approval",
            "priority": None,
            "enabled": True,
            "stop_processing": False,
            "conditions": '{"senderDomainIn": ["bigyellow.co.uk"]}',
            "actions": '{"autoApprove": true}',
        })
        assert rule.scope == RuleScope.APPROVAL
        assert rule.sort_priority == 999
        assert rule.conditions == [SenderDomainIn(("bigyellow.co.uk",))]
        assert rule.actions.auto_approve is True


class TestEvaluateRule:
    """Tests for single-rule evaluation."""

    def test_and_semantics(self):
        """Test every present condition must hold."""
        rule = make_rule("big invoices", conditions={
            "subjectContainsAny": ["invoice"],
            "amountGreaterThan": 100,
        })
        context = RuleContext(subject="Invoice 2026", amount=50)
        assert evaluate_rule(rule, context).matched is False

        context.amount = 150
        result = evaluate_rule(rule, context)
        assert result.matched is True
        assert result.reasons == ["subject_contains_any", "amount_greater_than"]

    def test_text_conditions_search_subject_description_and_body(self):
        """Test subject/description conditions share the same haystack."""
        rule = make_rule("ebay", conditions={"descriptionContainsAny": ["EBAY"]})
        assert evaluate_rule(rule, RuleContext(body_excerpt="your eBay fees")).matched is True
        assert evaluate_rule(rule, RuleContext(subject="eBay order")).matched is True

    def test_sender_domain_suffix(self):
        """Test sender domain matches on '@domain' suffix, case-insensitively."""
        rule = make_rule("storage", conditions={"senderDomainIn": ["bigyellow.co.uk"]})
        assert evaluate_rule(rule, RuleContext(from_address="Billing@BigYellow.co.uk")).matched
        assert not evaluate_rule(rule, RuleContext(from_address="billing@notbigyellow.co.uk.evil")).matched
        assert not evaluate_rule(rule, RuleContext(from_address="")).matched

    def test_missing_amount_counts_as_zero(self):
        """Test absent amounts compare as 0 and comparisons are strict."""
        below = make_rule("negative", conditions={"amountLessThan": 0})
        above = make_rule("positive", conditions={"amountGreaterThan": 0})
        assert evaluate_rule(below, RuleContext(amount=None)).matched is False
        assert evaluate_rule(above, RuleContext(amount=None)).matched is False
        assert evaluate_rule(below, RuleContext(amount=-3.5)).matched is True

    def test_rule_without_conditions_matches(self):
        """Test an empty condition set matches everything."""
        result = evaluate_rule(make_rule("catch-all"), RuleContext())
        assert result.matched is True
        assert result.reasons == []

    def test_default_confidence(self):
        """Test confidence falls back to 0.9."""
        assert evaluate_rule(make_rule("r"), RuleContext()).confidence == 0.9
        rule = make_rule("r", actions={"confidence": 0.95})
        assert evaluate_rule(rule, RuleContext()).confidence == 0.95


class TestEvaluateRules:
    """Tests for ordered evaluation."""

    def test_priority_order(self):
        """Test matches come back in ascending priority, missing priority last."""
        rules = [
            make_rule("late", priority=None),
            make_rule("second", priority=20),
            make_rule("first", priority=10),
        ]
        names = [r.rule_name for r in evaluate_rules(rules, RuleContext())]
        assert names == ["first", "second", "late"]

    def test_ties_keep_input_order(self):
        """Test equal priorities keep their original order."""
        rules = [make_rule("a", priority=5), make_rule("b", priority=5)]
        assert [r.rule_name for r in evaluate_rules(rules, RuleContext())] == ["a", "b"]

    def test_stop_processing_hides_later_rules(self):
        """Test a matched stop rule ends evaluation."""
        rules = [
            make_rule("A", priority=10, stop=True),
            make_rule("B", priority=20),
        ]
        assert [r.rule_name for r in evaluate_rules(rules, RuleContext())] == ["A"]

    def test_unmatched_stop_rule_does_not_stop(self):
        """Test stop_processing only applies when the rule matched."""
        rules = [
            make_rule("A", priority=10, stop=True, conditions={"subjectContainsAny": ["refund"]}),
            make_rule("B", priority=20),
        ]
        assert [r.rule_name for r in evaluate_rules(rules, RuleContext(subject="invoice"))] == ["B"]

    def test_disabled_rules_skipped(self):
        """Test disabled rules never match."""
        rules = [make_rule("off", enabled=False), make_rule("on")]
        assert [r.rule_name for r in evaluate_rules(rules, RuleContext())] == ["on"]
