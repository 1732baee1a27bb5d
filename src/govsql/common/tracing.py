"""OpenTelemetry tracing and outcome metrics."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import metrics, trace
from opentelemetry.trace import Tracer

_meter = metrics.get_meter("govsql.engine")
outcome_counter = _meter.create_counter(
    name="govsql.engine.outcome",
    description="Terminal engine outcomes by kind and reason",
    unit="1",
)


def get_tracer() -> Tracer:
    """Returns the application tracer."""
    return trace.get_tracer("govsql")


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """Context manager for creating a new trace span.

    Args:
        name (str): The name of the span.
        attributes (Optional[Dict[str, Any]]): Attributes to attach to the span.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name) as s:
        if attributes:
            for k, v in attributes.items():
                if v is None:
                    continue
                s.set_attribute(k, v)
        yield s


def record_outcome(kind: str, reason: Optional[str] = None) -> None:
    attributes = {"kind": kind}
    if reason:
        attributes["reason"] = reason
    outcome_counter.add(1, attributes)
