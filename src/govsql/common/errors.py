from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict


class ErrorSeverity(str, Enum):
    """Severity levels for engine errors."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCode(str, Enum):
    """Standardized error codes for the composition engine.

    The first four name the outcome of a request and are written to the
    audit log. The rest mark internal failures recorded on the engine state.
    """
    UNAUTHORIZED = "UNAUTHORIZED"
    COLLABORATOR_UNAVAILABLE = "COLLABORATOR_UNAVAILABLE"
    PATTERN_MISSING = "PATTERN_MISSING"
    CONSTRAINT_VIOLATED = "CONSTRAINT_VIOLATED"
    AUTHORIZER_CRASH = "AUTHORIZER_CRASH"
    COMPOSER_CRASH = "COMPOSER_CRASH"
    VALIDATOR_CRASH = "VALIDATOR_CRASH"
    INVALID_STATE = "INVALID_STATE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class EngineError(BaseModel):
    """Represents a structured error recorded while a request moves through the engine.

    Attributes:
        node (str): The node where the error occurred.
        message (str): A human-readable error message.
        severity (ErrorSeverity): The severity of the error.
        error_code (ErrorCode): The standardized error code.
        stack_trace (Optional[str]): Stack trace if applicable.
        details (Optional[Any]): Additional context or metadata.
    """
    model_config = ConfigDict(extra="ignore")

    node: str
    message: str
    severity: ErrorSeverity
    error_code: ErrorCode
    stack_trace: Optional[str] = None
    details: Optional[Any] = None


class GovSQLError(Exception):
    """Base class for errors raised by the composition engine."""


class PatternLoadError(GovSQLError):
    """Raised when the pattern library fails load-time validation."""


class ConfigError(GovSQLError):
    """Raised when a configuration file cannot be read or is invalid."""


class RequestCancelled(GovSQLError):
    """Raised when the caller abandons a request before it reaches a terminal state."""
