from __future__ import annotations

import concurrent.futures
import traceback
from typing import Any, Dict, FrozenSet, Optional, TYPE_CHECKING

import pybreaker

if TYPE_CHECKING:
    from govsql.pipeline.state import EngineState

from govsql.auth.providers import ModuleAuthorizationProvider
from govsql.common.contracts import ReportRequest
from govsql.common.errors import EngineError, ErrorCode, ErrorSeverity
from govsql.common.logger import get_logger
from govsql.common.resilience import AUTH_BREAKER
from govsql.common.settings import settings
from govsql.common.tracing import span
from govsql.pipeline.status import EngineStatus
from .schemas import AuthorizationDecision, DenyReason

logger = get_logger("authorizer")


class CollaboratorUnavailable(Exception):
    """The authorization collaborator failed, timed out, or returned garbage."""


class AuthorizationGate:
    """Checks a request's modules against the caller's authorized module set.

    The collaborator is called exactly once per ``authorize`` call and its
    answer is used for that request only. Every failure mode is a denial.
    """

    def __init__(
        self,
        provider: ModuleAuthorizationProvider,
        timeout_sec: Optional[float] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = AUTH_BREAKER,
    ):
        self.provider = provider
        self.timeout_sec = timeout_sec if timeout_sec is not None else settings.auth_timeout_sec
        self.breaker = breaker

    def _call_provider(self) -> FrozenSet[str]:
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="govsql-auth")
        try:
            future = pool.submit(self.provider.list_modules)
            try:
                result = future.result(timeout=self.timeout_sec)
            except concurrent.futures.TimeoutError as exc:
                raise CollaboratorUnavailable(
                    f"Authorization collaborator timed out after {self.timeout_sec}s"
                ) from exc
        finally:
            # A hung collaborator must not hold the request open.
            pool.shutdown(wait=False, cancel_futures=True)

        if result is None or isinstance(result, (str, bytes)):
            raise CollaboratorUnavailable(f"Collaborator returned an invalid module set: {result!r}")
        try:
            return frozenset(str(m).strip().upper() for m in result)
        except TypeError as exc:
            raise CollaboratorUnavailable(f"Collaborator returned a non-iterable: {result!r}") from exc

    def fetch_authorized_modules(self) -> FrozenSet[str]:
        if self.breaker is None:
            return self._call_provider()
        return self.breaker.call(self._call_provider)

    def authorize(self, request: ReportRequest) -> AuthorizationDecision:
        requested = request.referenced_modules
        try:
            authorized = self.fetch_authorized_modules()
        except pybreaker.CircuitBreakerError as exc:
            logger.warning("Authorization breaker open, denying: %s", exc)
            return AuthorizationDecision.deny(requested, DenyReason.COLLABORATOR_UNAVAILABLE)
        except Exception as exc:
            logger.warning("Authorization collaborator failed, denying: %s", exc)
            return AuthorizationDecision.deny(requested, DenyReason.COLLABORATOR_UNAVAILABLE)

        missing = requested - authorized
        if missing:
            logger.info("Authorization denied for %d of %d modules", len(missing), len(requested))
            return AuthorizationDecision.deny(missing, DenyReason.MODULE_NOT_AUTHORIZED)

        logger.info("Authorization granted for modules %s", sorted(requested))
        return AuthorizationDecision.allow()


class AuthorizerNode:
    """Graph node wrapping the AuthorizationGate."""

    def __init__(self, gate: AuthorizationGate):
        self.node_name = "authorizer"
        self.gate = gate

    def __call__(self, state: EngineState) -> Dict[str, Any]:
        try:
            with span("govsql.authorize", {"modules": ",".join(sorted(state.request.referenced_modules))}):
                decision = self.gate.authorize(state.request)
        except Exception as exc:
            logger.exception("Authorizer crashed")
            error = EngineError(
                node=self.node_name,
                message=f"Authorizer crashed: {exc}",
                severity=ErrorSeverity.CRITICAL,
                error_code=ErrorCode.AUTHORIZER_CRASH,
                stack_trace=traceback.format_exc(),
            )
            return {
                "decision": AuthorizationDecision.deny(
                    state.request.referenced_modules, DenyReason.COLLABORATOR_UNAVAILABLE
                ),
                "status": EngineStatus.DONE,
                "errors": [error],
            }

        return {
            "decision": decision,
            "status": EngineStatus.COMPOSING if decision.allowed else EngineStatus.DONE,
        }
