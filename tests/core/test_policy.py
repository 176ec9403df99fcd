from __future__ import annotations

import pytest

from promptloop.core import (
    AllowAllPolicy,
    ConfirmAllPolicy,
    Decision,
    DecisionOutcome,
    DenyAllPolicy,
    PolicyRule,
    RulePolicy,
)
from promptloop.core.policy import coerce_confirmation


def test_decision_helpers_and_round_trip():
    deny = Decision.deny("not today")

    assert deny.denied and not deny.allowed and not deny.requires_confirmation
    assert Decision.allow().allowed
    assert Decision.confirm("ask").requires_confirmation
    assert deny.to_dict() == {"outcome": "deny", "reason": "not today"}
    assert Decision.from_dict(deny.to_dict()) == deny
    assert Decision.from_dict({"outcome": "allow"}) == Decision.allow()

    with pytest.raises(ValueError):
        Decision.from_dict({"outcome": "maybe"})


def test_builtin_policies():
    assert AllowAllPolicy().authorize("x", {}, {}) == Decision.allow()
    assert DenyAllPolicy().authorize("x", {}, {}).denied
    assert DenyAllPolicy("read only").authorize("x", {}, {}).reason == "read only"
    assert ConfirmAllPolicy().authorize("x", {}, {}) == Decision.confirm("confirmation required")


def test_rule_policy_orders_by_priority_then_rule_id():
    policy = RulePolicy(
        [
            PolicyRule(rule_id="b-allow", outcome=DecisionOutcome.ALLOW, priority=10, tool_name="shell"),
            PolicyRule(rule_id="a-deny", outcome=DecisionOutcome.DENY, priority=10, tool_name="shell"),
            PolicyRule(rule_id="z-confirm", outcome=DecisionOutcome.CONFIRM, priority=50, tool_name_pattern="sh*"),
        ]
    )

    assert [rule.rule_id for rule in policy.rules] == ["z-confirm", "a-deny", "b-allow"]
    assert policy.authorize("shell", {}, {}) == Decision.confirm("matched rule z-confirm")


def test_rule_policy_matches_patterns_and_context():
    policy = RulePolicy(
        [
            PolicyRule(
                rule_id="prod-writes",
                outcome=DecisionOutcome.DENY,
                reason="writes are blocked in prod",
                tool_name_pattern="files_*",
                context_equals={"env": "prod"},
            ),
            PolicyRule(rule_id="disabled", outcome=DecisionOutcome.DENY, enabled=False, priority=999),
        ],
        default=Decision.confirm("unlisted tool"),
    )

    assert policy.authorize("files_write", {}, {"env": "prod"}) == Decision.deny("writes are blocked in prod")
    assert policy.authorize("files_write", {}, {"env": "dev"}) == Decision.confirm("unlisted tool")
    assert policy.authorize("search", {}, {"env": "prod"}) == Decision.confirm("unlisted tool")


def test_rule_policy_defaults_to_allow():
    assert RulePolicy().authorize("anything", {}, {}) == Decision.allow()


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("allow", DecisionOutcome.ALLOW),
        (" DENY ", DecisionOutcome.DENY),
        (True, DecisionOutcome.ALLOW),
        (False, DecisionOutcome.DENY),
        (DecisionOutcome.DENY, DecisionOutcome.DENY),
        (Decision.allow("ok"), DecisionOutcome.ALLOW),
        (DecisionOutcome.CONFIRM, None),
        (Decision.confirm("again"), None),
        ("maybe", None),
        (1, None),
        (None, None),
    ],
)
def test_coerce_confirmation(value, expected):
    assert coerce_confirmation(value) is expected
