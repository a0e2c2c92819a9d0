"""
mnemo errors -- typed exceptions surfaced to callers.

Provider failures (extraction, summarization, embedding) never appear here:
they are recovered locally with a deterministic fallback.
"""

from typing import Any, Dict, List, Optional


class MnemoError(Exception):
    """Base class for every error raised by mnemo."""


class NotFoundError(MnemoError):
    """A referenced entity, handler or row does not exist."""


class HandlerNotFoundError(NotFoundError):
    def __init__(self, request_type: str):
        super().__init__(f"No handler registered for request type: {request_type}")
        self.request_type = request_type


class DuplicateRegistrationError(MnemoError):
    """A second handler was registered for a request type. Configuration bug."""

    def __init__(self, request_type: str):
        super().__init__(f"Handler already registered for request type: {request_type}")
        self.request_type = request_type


class PolicyError(MnemoError):
    """Base for capability gate outcomes that stop an action."""

    def __init__(self, message: str, capability: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.capability = capability
        self.context = dict(context or {})


class CapabilityDeniedError(PolicyError):
    def __init__(self, capability: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(f"Capability denied: {capability}", capability, context)


class ApprovalRequiredError(PolicyError):
    def __init__(self, capability: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(f"Approval required for capability: {capability}", capability, context)


class ValidationError(MnemoError):
    """Request failed schema validation. Carries every violation message."""

    def __init__(self, errors: List[str], message: Optional[str] = None):
        self.errors = list(errors)
        super().__init__(message or f"Validation failed: {'; '.join(self.errors)}")
