"""
Resilience Module: Circuit Breakers for external collaborators.

The authorization collaborator is the only external dependency of the engine.
Its calls go through ``AUTH_BREAKER`` so that a failing collaborator is not
called request after request. An open breaker is a denial, never an allow.
"""
import pybreaker
from typing import Optional, List, Type
from govsql.common.logger import get_logger
from govsql.common.settings import settings

logger = get_logger("resilience")


class ObservabilityListener(pybreaker.CircuitBreakerListener):
    """Listener to export circuit breaker state changes and failures to logs."""

    def state_change(self, cb, old_state, new_state):
        logger.warning(
            "Circuit Breaker '%s' changed state: %s -> %s",
            cb.name,
            old_state.name if old_state else None,
            new_state.name,
        )

    def failure(self, cb, exc):
        logger.error(
            "Circuit Breaker '%s' recorded failure: %s: %s", cb.name, type(exc).__name__, exc
        )


def create_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 60,
    exclude: Optional[List[Type[Exception]]] = None
) -> pybreaker.CircuitBreaker:
    """Factory to create a configured Circuit Breaker."""
    return pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        name=name,
        listeners=[ObservabilityListener()],
        exclude=exclude or []
    )


AUTH_BREAKER = create_breaker(
    name="AUTH_BREAKER",
    fail_max=settings.auth_breaker_fail_max,
    reset_timeout=settings.auth_breaker_reset_timeout,
)
