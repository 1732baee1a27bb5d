"""Pattern library models and the read-only pattern store."""

from .models import (
    Stage,
    STAGE_ORDER,
    JoinCondition,
    RepositoryPattern,
    TemplateEntry,
    ProjectionSpec,
    ReportTemplate,
    PatternFileConfig,
    normalize_module,
)
from .store import PatternStore

__all__ = [
    "Stage",
    "STAGE_ORDER",
    "JoinCondition",
    "RepositoryPattern",
    "TemplateEntry",
    "ProjectionSpec",
    "ReportTemplate",
    "PatternFileConfig",
    "PatternStore",
    "normalize_module",
]
