"""
mnemo Capability Gate -- policy evaluation with specificity resolution.

A policy constrains a capability along up to three dimensions (channel,
persona, user_id). A declared dimension that does not match the context
excludes the policy outright; among the policies that remain the one
matching the most dimensions wins, and equal scores resolve
deny > approval_required > allow. No applicable policy means allow.

Every check writes one audit row before its outcome is returned or raised.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Optional, Union

from mnemo.errors import ApprovalRequiredError, CapabilityDeniedError
from mnemo.sqlite_store import KnowledgeStore, Policy

logger = logging.getLogger("mnemo.gate")

ALLOW = "allow"
DENY = "deny"
APPROVAL_REQUIRED = "approval_required"

# Higher wins at equal specificity
_EFFECT_PRECEDENCE = {ALLOW: 0, APPROVAL_REQUIRED: 1, DENY: 2}

_DIMENSIONS = ("channel", "persona", "user_id")


@dataclass
class CapabilityContext:
    channel: Optional[str] = None
    persona: Optional[str] = None
    user_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Union["CapabilityContext", Dict[str, Any], None]) -> "CapabilityContext":
        if isinstance(value, cls):
            return value
        data = dict(value or {})
        return cls(
            channel=data.pop("channel", None),
            persona=data.pop("persona", None),
            user_id=data.pop("user_id", data.pop("userId", None)),
            extra=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {k: v for k, v in asdict(self).items() if k != "extra" and v is not None}
        out.update(self.extra)
        return out


def specificity(policy: Policy, context: CapabilityContext) -> Optional[int]:
    """Number of declared dimensions that match, or None if any declared one mismatches."""
    score = 0
    for dim in _DIMENSIONS:
        declared = getattr(policy, dim)
        if not declared:
            continue
        if declared != getattr(context, dim):
            return None
        score += 1
    return score


def evaluate(policies: Iterable[Policy], context: CapabilityContext) -> str:
    """Resolve the effective effect for a set of policies. Pure function."""
    best_score = -1
    best_effect = ALLOW
    for policy in policies:
        score = specificity(policy, context)
        if score is None:
            continue
        if score > best_score:
            best_score = score
            best_effect = policy.effect
        elif score == best_score and _EFFECT_PRECEDENCE[policy.effect] > _EFFECT_PRECEDENCE[best_effect]:
            best_effect = policy.effect
    return best_effect


class CapabilityGate:
    def __init__(self, store: KnowledgeStore):
        self.store = store

    def evaluate(self, policies: Iterable[Policy], context) -> str:
        return evaluate(policies, CapabilityContext.coerce(context))

    def resolve(self, capability: str, context=None) -> str:
        """Evaluate and audit without raising. Returns the effect."""
        ctx = CapabilityContext.coerce(context)
        policies = self.store.get_policies(capability)
        effect = evaluate(policies, ctx)

        self.store.log_audit(
            id=str(uuid.uuid4()),
            action="capability_check",
            actor=ctx.user_id or ctx.persona or "unknown",
            target=capability,
            details={"context": ctx.to_dict(), "effect": effect, "policy_count": len(policies)},
        )
        logger.debug("capability %s -> %s (%d policies)", capability, effect, len(policies))
        return effect

    def check(self, capability: str, context=None) -> None:
        """Return on allow; raise CapabilityDeniedError or ApprovalRequiredError otherwise."""
        ctx = CapabilityContext.coerce(context)
        effect = self.resolve(capability, ctx)
        if effect == DENY:
            raise CapabilityDeniedError(capability, ctx.to_dict())
        if effect == APPROVAL_REQUIRED:
            raise ApprovalRequiredError(capability, ctx.to_dict())
