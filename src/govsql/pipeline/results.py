from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from govsql.pipeline.nodes.composer.schemas import ComposedArtifact, MissingItem
from govsql.pipeline.nodes.validator.schemas import ConstraintViolation, RuleId

REFUSAL_HEADLINE = "Report generation refused."


class RefusalReason(str, Enum):
    UNAUTHORIZED = "unauthorized"
    CONSTRAINT_VIOLATION = "constraint_violation"
    INTERNAL_ERROR = "internal_error"


class ArtifactResult(BaseModel):
    """A validated artifact. The only result that carries SQL."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["artifact"] = "artifact"
    artifact: ComposedArtifact

    @property
    def sql(self) -> str:
        return self.artifact.render()

    @property
    def parameters(self) -> Dict[str, Any]:
        return dict(self.artifact.parameters)

    def render(self) -> str:
        return self.sql


class Refusal(BaseModel):
    """A fixed-form refusal.

    The rendering names the reason category and, for constraint violations,
    the rule identifiers. Module names, rule messages and fragment text stay
    out of it.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["refusal"] = "refusal"
    reason: RefusalReason
    violations: Tuple[ConstraintViolation, ...] = Field(default_factory=tuple)

    @property
    def rules(self) -> List[RuleId]:
        ordered: List[RuleId] = []
        for violation in self.violations:
            if violation.rule not in ordered:
                ordered.append(violation.rule)
        return ordered

    def render(self) -> str:
        if self.reason == RefusalReason.UNAUTHORIZED:
            detail = "unauthorized module"
        elif self.reason == RefusalReason.CONSTRAINT_VIOLATION:
            detail = f"constraint violation ({', '.join(r.value for r in self.rules)})"
        else:
            detail = "internal error"
        return f"{REFUSAL_HEADLINE}\nReason: {detail}."


class ClarificationNeeded(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["clarification"] = "clarification"
    missing: Tuple[MissingItem, ...]

    def render(self) -> str:
        return "\n".join(item.describe() for item in self.missing)


EngineResult = Annotated[
    Union[ArtifactResult, Refusal, ClarificationNeeded],
    Field(discriminator="kind"),
]
