from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field


class DenyReason(str, Enum):
    MODULE_NOT_AUTHORIZED = "module_not_authorized"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"


class AuthorizationDecision(BaseModel):
    """Allow, or Deny with the modules that were not covered.

    ``missing_modules`` is for audit only. The engine never copies it into a
    user-facing refusal.
    """

    model_config = ConfigDict(frozen=True)

    allowed: bool
    missing_modules: FrozenSet[str] = Field(default_factory=frozenset)
    reason: Optional[DenyReason] = None

    @classmethod
    def allow(cls) -> "AuthorizationDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, missing: Iterable[str], reason: DenyReason) -> "AuthorizationDecision":
        return cls(allowed=False, missing_modules=frozenset(missing), reason=reason)
