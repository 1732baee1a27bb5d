# govsql package

from .public_api import GovSQL

from .pipeline.engine import Engine
from .pipeline.results import ArtifactResult, ClarificationNeeded, EngineResult, Refusal, RefusalReason

# Also expose core models and enums
from .common.cancellation import CancellationToken
from .common.contracts import EntityRef, ReportRequest
from .common.errors import ErrorSeverity, ErrorCode, EngineError, GovSQLError, PatternLoadError, ConfigError, RequestCancelled
from .auth import UserContext, StaticModuleProvider, PolicyModuleProvider, ModuleAuthorizationProvider
from .patterns import PatternStore, RepositoryPattern, ReportTemplate, Stage

__all__ = [
    "GovSQL",
    "Engine",
    "ArtifactResult",
    "ClarificationNeeded",
    "EngineResult",
    "Refusal",
    "RefusalReason",
    "CancellationToken",
    "EntityRef",
    "ReportRequest",
    "ErrorSeverity",
    "ErrorCode",
    "EngineError",
    "GovSQLError",
    "PatternLoadError",
    "ConfigError",
    "RequestCancelled",
    "UserContext",
    "StaticModuleProvider",
    "PolicyModuleProvider",
    "ModuleAuthorizationProvider",
    "PatternStore",
    "RepositoryPattern",
    "ReportTemplate",
    "Stage",
]
