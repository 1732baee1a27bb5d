from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class RuleId(str, Enum):
    """Identifiers of the artifact rules. Safe to show to callers."""

    DIALECT = "DIALECT"
    HINT_PRESENCE = "HINT_PRESENCE"
    FORBIDDEN_TOKEN = "FORBIDDEN_TOKEN"
    TENANT_SCOPE = "TENANT_SCOPE"
    STAGE_SEQUENCE = "STAGE_SEQUENCE"
    PROJECTION_PURITY = "PROJECTION_PURITY"


class ConstraintViolation(BaseModel):
    """One rule failure. ``block`` is None for artifact-level failures."""

    model_config = ConfigDict(frozen=True)

    rule: RuleId
    block: Optional[str] = None
    message: str
