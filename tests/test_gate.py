"""Tests for mnemo CapabilityGate -- specificity, precedence, auditing."""
import pytest

from mnemo.errors import ApprovalRequiredError, CapabilityDeniedError
from mnemo.gate import CapabilityContext, CapabilityGate, evaluate, specificity
from mnemo.sqlite_store import Policy


@pytest.fixture
def gate(store):
    return CapabilityGate(store)


def _policy(pid, effect, **dims):
    return Policy(id=pid, capability="send_email", effect=effect, **dims)


class TestEvaluate:
    @pytest.mark.parametrize("ctx", [
        {},
        {"channel": "discord"},
        {"channel": "slack", "persona": "bot", "user_id": "u1"},
    ])
    def test_no_policies_allows(self, gate, ctx):
        gate.check("anything_at_all", ctx)
        assert gate.resolve("anything_at_all", ctx) == "allow"

    def test_mismatched_dimension_excludes_policy(self):
        ctx = CapabilityContext(channel="slack")
        assert specificity(_policy("p", "deny", channel="discord"), ctx) is None
        assert evaluate([_policy("p", "deny", channel="discord")], ctx) == "allow"

    def test_undeclared_dimensions_match_anything(self):
        ctx = CapabilityContext(channel="discord", persona="bot")
        assert specificity(_policy("p", "deny"), ctx) == 0
        assert specificity(_policy("p", "deny", channel="discord", persona="bot"), ctx) == 2

    def test_more_specific_wins_regardless_of_order(self):
        ctx = CapabilityContext(channel="discord", persona="bot")
        broad_allow = _policy("a", "allow", channel="discord")
        narrow_deny = _policy("b", "deny", channel="discord", persona="bot")
        assert evaluate([broad_allow, narrow_deny], ctx) == "deny"
        assert evaluate([narrow_deny, broad_allow], ctx) == "deny"

        broad_deny = _policy("c", "deny", channel="discord")
        narrow_allow = _policy("d", "allow", channel="discord", persona="bot")
        assert evaluate([broad_deny, narrow_allow], ctx) == "allow"
        assert evaluate([narrow_allow, broad_deny], ctx) == "allow"

    @pytest.mark.parametrize("effects,expected", [
        (["allow", "deny"], "deny"),
        (["deny", "allow"], "deny"),
        (["approval_required", "deny"], "deny"),
        (["allow", "approval_required"], "approval_required"),
        (["approval_required", "allow"], "approval_required"),
        (["allow", "approval_required", "deny"], "deny"),
    ])
    def test_tie_break_precedence(self, effects, expected):
        ctx = CapabilityContext(channel="discord")
        policies = [_policy(str(i), e, channel="discord") for i, e in enumerate(effects)]
        assert evaluate(policies, ctx) == expected

    def test_exclusive_single_field_policies_tie(self):
        ctx = CapabilityContext(channel="discord", persona="bot")
        policies = [_policy("a", "allow", channel="discord"), _policy("b", "deny", persona="bot")]
        assert evaluate(policies, ctx) == "deny"


class TestCheck:
    def test_scenario_two_field_and_fallback(self, gate, store):
        store.insert_policy(id="p1", capability="send_email", channel="discord", effect="deny")
        store.insert_policy(id="p2", capability="send_email", channel="discord", persona="bot", effect="deny")

        with pytest.raises(CapabilityDeniedError) as exc:
            gate.check("send_email", {"channel": "discord", "persona": "bot"})
        assert exc.value.capability == "send_email"
        assert exc.value.context == {"channel": "discord", "persona": "bot"}

        with pytest.raises(CapabilityDeniedError):
            gate.check("send_email", {"channel": "discord", "persona": "other"})

    def test_approval_required(self, gate, store):
        store.insert_policy(id="p1", capability="deploy", effect="approval_required")
        with pytest.raises(ApprovalRequiredError):
            gate.check("deploy", {"user_id": "u1"})

    def test_allow_returns_none(self, gate, store):
        store.insert_policy(id="p1", capability="read", effect="allow", user_id="u1")
        assert gate.check("read", {"user_id": "u1"}) is None

    def test_user_id_alias(self, gate, store):
        store.insert_policy(id="p1", capability="read", effect="deny", user_id="u1")
        with pytest.raises(CapabilityDeniedError):
            gate.check("read", {"userId": "u1"})


class TestAudit:
    def test_denied_check_is_audited(self, gate, store):
        store.insert_policy(id="p1", capability="send_email", channel="discord", effect="deny")
        store.insert_policy(id="p2", capability="send_email", channel="slack", effect="allow")
        with pytest.raises(CapabilityDeniedError):
            gate.check("send_email", {"channel": "discord", "user_id": "u9"})

        entries = store.get_audit_log(action="capability_check")
        assert len(entries) == 1
        entry = entries[0]
        assert entry.actor == "u9"
        assert entry.target == "send_email"
        assert entry.details["effect"] == "deny"
        assert entry.details["policy_count"] == 2
        assert entry.details["context"] == {"channel": "discord", "user_id": "u9"}

    def test_every_check_writes_one_row(self, gate, store):
        for _ in range(3):
            gate.check("noop", {})
        entries = store.get_audit_log(action="capability_check")
        assert len(entries) == 3
        assert all(e.actor == "unknown" for e in entries)
        assert all(e.details["effect"] == "allow" for e in entries)


class TestCapabilityContext:
    def test_coerce_keeps_extra(self):
        ctx = CapabilityContext.coerce({"channel": "c", "ip": "1.2.3.4"})
        assert ctx.channel == "c"
        assert ctx.extra == {"ip": "1.2.3.4"}
        assert ctx.to_dict() == {"channel": "c", "ip": "1.2.3.4"}

    def test_coerce_none(self):
        assert CapabilityContext.coerce(None) == CapabilityContext()
