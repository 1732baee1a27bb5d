from __future__ import annotations

import traceback
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from govsql.pipeline.state import EngineState

from govsql.common.errors import EngineError, ErrorCode, ErrorSeverity
from govsql.common.logger import get_logger
from govsql.common.tracing import span
from govsql.pipeline.nodes.composer.schemas import ComposedArtifact
from govsql.pipeline.status import EngineStatus
from .rules import RULES, ValidationPolicy
from .schemas import ConstraintViolation

logger = get_logger("validator")


class ConstraintValidator:
    """Runs every artifact rule and collects all violations.

    An empty list means the artifact may be released. Any violation discards
    the whole artifact; the validator never repairs anything.

    Attributes:
        policy (ValidationPolicy): Rule parameters.
    """

    def __init__(self, policy: Optional[ValidationPolicy] = None):
        """Initializes the ConstraintValidator.

        Args:
            policy (Optional[ValidationPolicy]): Rule parameters. Defaults to the
                values in settings.
        """
        self.policy = policy or ValidationPolicy.from_settings()

    def validate(self, artifact: ComposedArtifact) -> List[ConstraintViolation]:
        violations: List[ConstraintViolation] = []
        for rule_id, rule in RULES:
            found = rule(artifact, self.policy)
            if found:
                logger.info("Rule %s reported %d violation(s)", rule_id.value, len(found))
            violations.extend(found)
        return violations


class ValidatorNode:
    """Graph node wrapping the ConstraintValidator."""

    def __init__(self, validator: ConstraintValidator):
        self.node_name = "validator"
        self.validator = validator

    def __call__(self, state: EngineState) -> Dict[str, Any]:
        if state.draft is None:
            return {
                "status": EngineStatus.DONE,
                "errors": [
                    EngineError(
                        node=self.node_name,
                        message="Validator reached without a draft artifact.",
                        severity=ErrorSeverity.CRITICAL,
                        error_code=ErrorCode.INVALID_STATE,
                    )
                ],
            }

        with span("govsql.validate", {"blocks": len(state.draft.blocks)}):
            try:
                violations = self.validator.validate(state.draft)
            except Exception as exc:
                logger.exception("Validator crashed")
                return {
                    "status": EngineStatus.DONE,
                    "errors": [
                        EngineError(
                            node=self.node_name,
                            message=f"Validator crashed: {exc}",
                            severity=ErrorSeverity.CRITICAL,
                            error_code=ErrorCode.VALIDATOR_CRASH,
                            stack_trace=traceback.format_exc(),
                        )
                    ],
                }

        return {"violations": violations, "validated": True, "status": EngineStatus.DONE}
