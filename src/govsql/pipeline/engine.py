from __future__ import annotations

import concurrent.futures
import contextvars
import traceback
import uuid
from typing import Any, Dict, List, Optional

import pybreaker

from govsql.auth.providers import ModuleAuthorizationProvider
from govsql.common.cancellation import CancellationToken
from govsql.common.contracts import ReportRequest
from govsql.common.errors import EngineError, ErrorCode, ErrorSeverity, RequestCancelled
from govsql.common.event_logger import EventLogger, event_logger
from govsql.common.logger import get_logger, request_context
from govsql.common.resilience import AUTH_BREAKER
from govsql.common.tracing import record_outcome, span
from govsql.patterns.store import PatternStore
from govsql.pipeline.graph import build_graph
from govsql.pipeline.nodes.authorizer import AuthorizationGate, DenyReason
from govsql.pipeline.nodes.composer import TemplateComposer
from govsql.pipeline.nodes.validator import ConstraintValidator, ValidationPolicy
from govsql.pipeline.results import (
    ArtifactResult,
    ClarificationNeeded,
    EngineResult,
    Refusal,
    RefusalReason,
)
from govsql.pipeline.state import EngineState
from govsql.pipeline.status import EngineStatus

logger = get_logger("engine")


class Engine:
    """Runs one report request through authorization, composition and validation.

    The engine holds no per-request state. A single instance may serve
    concurrent ``generate`` calls; the pattern store it reads is immutable.
    """

    def __init__(
        self,
        store: PatternStore,
        provider: ModuleAuthorizationProvider,
        policy: Optional[ValidationPolicy] = None,
        auth_timeout_sec: Optional[float] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = AUTH_BREAKER,
        audit: Optional[EventLogger] = None,
        poll_interval: float = 0.05,
    ):
        self.store = store
        self.gate = AuthorizationGate(provider, timeout_sec=auth_timeout_sec, breaker=breaker)
        self.composer = TemplateComposer(store)
        self.validator = ConstraintValidator(policy)
        self.audit = audit or event_logger
        self.poll_interval = poll_interval
        self.graph = build_graph(self.gate, self.composer, self.validator)

    def generate(
        self,
        request: ReportRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EngineResult:
        """Produces exactly one terminal result for the request.

        Args:
            request (ReportRequest): The report request.
            cancel_token (Optional[CancellationToken]): Set by the caller to
                abandon the request.

        Returns:
            EngineResult: An ArtifactResult, Refusal or ClarificationNeeded.

        Raises:
            RequestCancelled: If the token is set before the request finishes.
                Partial work is discarded.
        """
        trace_id = str(uuid.uuid4())
        token = cancel_token or CancellationToken()

        with request_context(trace_id, request.report_type):
            with span("govsql.generate", {"trace_id": trace_id, "report_type": request.report_type}):
                initial_state = EngineState(trace_id=trace_id, request=request)
                final_state = self._run(initial_state, token)
                result = self._to_result(final_state)

            self._record(final_state, result)
            return result

    def _run(self, state: EngineState, token: CancellationToken) -> EngineState:
        if token.is_cancelled():
            raise RequestCancelled("Request cancelled before it started.")

        ctx = contextvars.copy_context()
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="govsql-engine")
        try:
            handed = state.model_copy(update={"status": EngineStatus.AUTHORIZING})
            future = pool.submit(ctx.run, self.graph.invoke, handed.model_dump())
            while True:
                if token.is_cancelled():
                    future.cancel()
                    logger.info("Request cancelled by caller")
                    raise RequestCancelled("Request cancelled by caller.")
                try:
                    output = future.result(timeout=self.poll_interval)
                    break
                except concurrent.futures.TimeoutError:
                    continue
        except RequestCancelled:
            raise
        except Exception as exc:
            logger.exception("Engine graph failed")
            return state.model_copy(
                update={
                    "errors": [
                        EngineError(
                            node="engine",
                            message=f"Engine graph failed: {exc}",
                            severity=ErrorSeverity.CRITICAL,
                            error_code=ErrorCode.UNKNOWN_ERROR,
                            stack_trace=traceback.format_exc(),
                        )
                    ]
                }
            )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        return EngineState.model_validate(output)

    def _to_result(self, state: EngineState) -> EngineResult:
        if state.errors:
            return Refusal(reason=RefusalReason.INTERNAL_ERROR)

        decision = state.decision
        if decision is None:
            return Refusal(reason=RefusalReason.INTERNAL_ERROR)
        if not decision.allowed:
            return Refusal(reason=RefusalReason.UNAUTHORIZED)

        if state.missing is not None:
            return ClarificationNeeded(missing=(state.missing,))

        if state.draft is None or not state.validated:
            return Refusal(reason=RefusalReason.INTERNAL_ERROR)
        if _unauthorized_modules(state):
            logger.error("Draft reaches modules outside the authorized request: %s", _unauthorized_modules(state))
            return Refusal(reason=RefusalReason.UNAUTHORIZED)
        if state.violations:
            return Refusal(reason=RefusalReason.CONSTRAINT_VIOLATION, violations=tuple(state.violations))

        return ArtifactResult(artifact=state.draft)

    def _record(self, state: EngineState, result: EngineResult) -> None:
        request = state.request
        base: Dict[str, Any] = {"report_type": request.report_type}

        if isinstance(result, ArtifactResult):
            event = "artifact_emitted"
            payload = {
                **base,
                "modules": list(result.artifact.modules),
                "patterns": [b.pattern_key for b in result.artifact.blocks if b.pattern_key],
                "parameters": sorted(result.artifact.parameters),
            }
            record_outcome("artifact")
        elif isinstance(result, ClarificationNeeded):
            event = "clarification_needed"
            payload = {
                **base,
                "error_code": ErrorCode.PATTERN_MISSING.value,
                "missing": [m.model_dump(mode="json") for m in result.missing],
            }
            record_outcome("clarification", result.missing[0].kind.value)
        elif result.reason == RefusalReason.UNAUTHORIZED:
            event = "authorization_denied"
            reason = state.decision.reason
            code = ErrorCode.UNAUTHORIZED
            if reason == DenyReason.COLLABORATOR_UNAVAILABLE:
                code = ErrorCode.COLLABORATOR_UNAVAILABLE
            payload = {
                **base,
                "error_code": code.value,
                "requested_modules": sorted(request.referenced_modules),
                "missing_modules": sorted(state.decision.missing_modules) or _unauthorized_modules(state),
                "reason": reason.value if reason else None,
            }
            record_outcome("refusal", result.reason.value)
        elif result.reason == RefusalReason.CONSTRAINT_VIOLATION:
            event = "constraint_violation"
            payload = {
                **base,
                "error_code": ErrorCode.CONSTRAINT_VIOLATED.value,
                "violations": [v.model_dump(mode="json") for v in result.violations],
            }
            record_outcome("refusal", result.reason.value)
        else:
            event = "internal_error"
            payload = {
                **base,
                "error_code": (state.errors[0].error_code if state.errors else ErrorCode.INVALID_STATE).value,
                "errors": [
                    {"node": e.node, "error_code": e.error_code.value, "message": e.message}
                    for e in state.errors
                ],
            }
            record_outcome("refusal", result.reason.value)

        logger.info("Request finished: %s", event)
        self.audit.log_event(event, payload, trace_id=state.trace_id)


def _unauthorized_modules(state: EngineState) -> List[str]:
    """Modules a draft touches that the allowed request never named."""
    if state.draft is None:
        return []
    return sorted(set(state.draft.modules) - state.request.referenced_modules)
