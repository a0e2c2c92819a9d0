"""
mnemo pipeline behaviors -- cross-cutting wrappers around request handlers.

A behavior is any object with ``async handle(request, next)``; it either
awaits ``next()`` or short-circuits by raising. None of these swallow the
handler's error.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from jsonschema import Draft7Validator

from mnemo.errors import ValidationError
from mnemo.gate import CapabilityContext, CapabilityGate

logger = logging.getLogger("mnemo.mediator")


def _request_type(request: Any) -> str:
    return getattr(request, "request_type", type(request).__name__)


def _request_metadata(request: Any):
    return getattr(request, "metadata", None)


@dataclass
class LogEntry:
    request_type: str
    timestamp: str
    duration_ms: float
    success: bool
    error: Optional[str] = None


MetricsEntry = LogEntry


async def _timed(request: Any, next) -> Tuple[Any, LogEntry, Optional[BaseException]]:
    started = time.perf_counter()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        result = await next()
    except Exception as e:
        entry = LogEntry(
            request_type=_request_type(request),
            timestamp=timestamp,
            duration_ms=(time.perf_counter() - started) * 1000,
            success=False,
            error=str(e),
        )
        return None, entry, e
    entry = LogEntry(
        request_type=_request_type(request),
        timestamp=timestamp,
        duration_ms=(time.perf_counter() - started) * 1000,
        success=True,
    )
    return result, entry, None


def _default_sink(entry: LogEntry) -> None:
    if entry.success:
        logger.info("%s ok in %.1fms", entry.request_type, entry.duration_ms)
    else:
        logger.warning("%s failed in %.1fms: %s", entry.request_type, entry.duration_ms, entry.error)


class LoggingBehavior:
    """Emits one LogEntry per request to ``sink``."""

    def __init__(self, sink: Optional[Callable[[LogEntry], None]] = None):
        self.sink = sink or _default_sink

    async def handle(self, request, next):
        result, entry, error = await _timed(request, next)
        self.sink(entry)
        if error is not None:
            raise error
        return result


class MetricsBehavior:
    """Keeps an in-process record of every request's duration and outcome."""

    def __init__(self):
        self._metrics: List[MetricsEntry] = []

    async def handle(self, request, next):
        result, entry, error = await _timed(request, next)
        self._metrics.append(entry)
        if error is not None:
            raise error
        return result

    def get_metrics(self) -> List[MetricsEntry]:
        return list(self._metrics)

    def get_metrics_for(self, request_type: str) -> List[MetricsEntry]:
        return [m for m in self._metrics if m.request_type == request_type]

    def summary(self) -> Dict[str, Dict[str, Any]]:
        """Per-type call count, failure count and mean duration."""
        out: Dict[str, Dict[str, Any]] = {}
        for m in self._metrics:
            row = out.setdefault(m.request_type, {"count": 0, "failures": 0, "total_ms": 0.0})
            row["count"] += 1
            row["failures"] += 0 if m.success else 1
            row["total_ms"] += m.duration_ms
        for row in out.values():
            row["mean_ms"] = row.pop("total_ms") / row["count"]
        return out

    def clear(self) -> None:
        self._metrics.clear()


class Validator(Protocol):
    def validate(self, payload: Dict[str, Any], schema: Any) -> List[str]: ...


class JsonSchemaValidator:
    """Draft-7 JSON Schema validator returning every violation message."""

    def validate(self, payload: Dict[str, Any], schema: Any) -> List[str]:
        validator = Draft7Validator(schema)
        messages = []
        for error in sorted(validator.iter_errors(payload), key=lambda e: list(e.path)):
            path = ".".join(str(p) for p in error.path) if error.path else "root"
            messages.append(f"{path}: {error.message}")
        return messages


class ValidationBehavior:
    """Validates the request payload when its metadata carries a schema."""

    def __init__(self, validator: Optional[Validator] = None):
        self.validator = validator

    async def handle(self, request, next):
        meta = _request_metadata(request)
        schema = getattr(meta, "validation_schema", None)
        if schema is not None and self.validator is not None:
            payload = request.payload() if hasattr(request, "payload") else dict(vars(request))
            errors = self.validator.validate(payload, schema)
            if errors:
                raise ValidationError(errors)
        return await next()


class CapabilityGateBehavior:
    """Checks each of the request's required capabilities before the handler runs."""

    def __init__(self, gate: CapabilityGate, context_provider: Callable[[], Any]):
        self.gate = gate
        self.context_provider = context_provider

    async def handle(self, request, next):
        meta = _request_metadata(request)
        required = getattr(meta, "required_capabilities", None) or []
        if required:
            context = CapabilityContext.coerce(self.context_provider())
            for capability in required:
                self.gate.check(capability, context)
        return await next()
