"""
Tool-call authorization: decisions, the policy protocol and built-in policies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from typing import Any, Awaitable, Iterable, Protocol


class DecisionOutcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    CONFIRM = "confirm"


@dataclass(frozen=True, slots=True)
class Decision:
    """Policy verdict for one tool call."""

    outcome: DecisionOutcome
    reason: str = ""

    @classmethod
    def allow(cls, reason: str = "") -> "Decision":
        return cls(outcome=DecisionOutcome.ALLOW, reason=reason)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(outcome=DecisionOutcome.DENY, reason=reason)

    @classmethod
    def confirm(cls, reason: str) -> "Decision":
        return cls(outcome=DecisionOutcome.CONFIRM, reason=reason)

    @property
    def allowed(self) -> bool:
        return self.outcome is DecisionOutcome.ALLOW

    @property
    def denied(self) -> bool:
        return self.outcome is DecisionOutcome.DENY

    @property
    def requires_confirmation(self) -> bool:
        return self.outcome is DecisionOutcome.CONFIRM

    def to_dict(self) -> dict[str, str]:
        return {"outcome": self.outcome.value, "reason": self.reason}

    @classmethod
    def from_dict(cls, value: dict[str, Any]) -> "Decision":
        return cls(outcome=DecisionOutcome(str(value["outcome"])), reason=str(value.get("reason") or ""))


class Policy(Protocol):
    """
    Decides whether a resolved tool call may run.

    `authorize` may be sync or async; the runner awaits awaitable results.
    """

    def authorize(
        self,
        name: str,
        arguments: dict[str, Any],
        context: dict[str, Any],
    ) -> Decision | Awaitable[Decision]: ...


class AllowAllPolicy:
    """Allows every tool call."""

    def authorize(self, name: str, arguments: dict[str, Any], context: dict[str, Any]) -> Decision:
        return Decision.allow()


class DenyAllPolicy:
    """Denies every tool call with a fixed reason."""

    def __init__(self, reason: str = "tool calls are disabled") -> None:
        self.reason = reason

    def authorize(self, name: str, arguments: dict[str, Any], context: dict[str, Any]) -> Decision:
        return Decision.deny(self.reason)


class ConfirmAllPolicy:
    """Requires human confirmation for every tool call."""

    def __init__(self, reason: str = "confirmation required") -> None:
        self.reason = reason

    def authorize(self, name: str, arguments: dict[str, Any], context: dict[str, Any]) -> Decision:
        return Decision.confirm(self.reason)


@dataclass(frozen=True, slots=True)
class PolicyRule:
    """
    Single authorization rule with deterministic priority ordering.

    A rule matches when every configured condition holds: exact tool name,
    fnmatch-style name pattern, and equality of the listed context keys.
    """

    rule_id: str
    outcome: DecisionOutcome
    priority: int = 100
    enabled: bool = True
    reason: str = ""
    tool_name: str | None = None
    tool_name_pattern: str | None = None
    context_equals: dict[str, Any] = field(default_factory=dict)

    def matches(self, name: str, context: dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        if self.tool_name is not None and name != self.tool_name:
            return False
        if self.tool_name_pattern is not None and not fnmatch(name, self.tool_name_pattern):
            return False
        for key, expected in self.context_equals.items():
            if context.get(key) != expected:
                return False
        return True


class RulePolicy:
    """
    Deterministic rule evaluator.

    Rule selection:
    1. Only enabled + matching rules are considered.
    2. Rules are sorted by priority DESC, then rule_id ASC.
    3. The highest-priority matching rule decides the outcome.
    4. With no match, `default` decides (allow unless configured).
    """

    def __init__(
        self,
        rules: Iterable[PolicyRule] | None = None,
        *,
        default: Decision | None = None,
    ) -> None:
        self._rules: list[PolicyRule] = sorted(
            list(rules or []),
            key=lambda rule: (-rule.priority, rule.rule_id),
        )
        self._default = default or Decision.allow()

    @property
    def rules(self) -> list[PolicyRule]:
        """Return configured rules in evaluation order."""
        return list(self._rules)

    def authorize(self, name: str, arguments: dict[str, Any], context: dict[str, Any]) -> Decision:
        for rule in self._rules:
            if rule.matches(name, context):
                return Decision(outcome=rule.outcome, reason=rule.reason or f"matched rule {rule.rule_id}")
        return self._default


def coerce_confirmation(value: Any) -> DecisionOutcome | None:
    """
    Map a caller-supplied confirmation to allow/deny.

    Accepts `DecisionOutcome`, `Decision`, booleans and the strings
    `"allow"`/`"deny"`; anything else yields `None`.
    """
    if isinstance(value, Decision):
        value = value.outcome
    if isinstance(value, DecisionOutcome):
        return value if value is not DecisionOutcome.CONFIRM else None
    if isinstance(value, bool):
        return DecisionOutcome.ALLOW if value else DecisionOutcome.DENY
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized == "allow":
            return DecisionOutcome.ALLOW
        if normalized == "deny":
            return DecisionOutcome.DENY
    return None
