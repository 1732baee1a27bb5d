from __future__ import annotations

from typing import Annotated, List, Optional
import operator

from pydantic import BaseModel, ConfigDict, Field

from govsql.common.contracts import ReportRequest
from govsql.common.errors import EngineError
from govsql.pipeline.status import EngineStatus
from govsql.pipeline.nodes.authorizer.schemas import AuthorizationDecision
from govsql.pipeline.nodes.composer.schemas import ComposedArtifact, MissingItem
from govsql.pipeline.nodes.validator.schemas import ConstraintViolation


class EngineState(BaseModel):
    """State carried through the engine graph for one request."""

    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    trace_id: Optional[str] = Field(default=None)
    request: ReportRequest
    status: EngineStatus = Field(default=EngineStatus.START)

    decision: Optional[AuthorizationDecision] = Field(default=None)
    draft: Optional[ComposedArtifact] = Field(
        default=None,
        description="Composed but unvalidated artifact. Never returned to callers."
    )
    missing: Optional[MissingItem] = Field(default=None)
    violations: List[ConstraintViolation] = Field(default_factory=list)
    validated: bool = Field(default=False)

    errors: Annotated[List[EngineError], operator.add] = Field(default_factory=list)
