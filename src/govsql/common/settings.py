from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env into os.environ
load_dotenv()


class Settings(BaseSettings):
    """Application configuration settings backed by environment variables."""

    pattern_library_path: str = Field(
        default="configs/patterns",
        validation_alias="PATTERN_LIBRARY",
        description="Directory holding the YAML pattern library (one file per module plus templates)."
    )
    policies_config_path: str = Field(
        default="configs/policies.json",
        validation_alias="POLICIES_CONFIG",
        description="Path to the JSON file mapping roles to authorized modules."
    )

    auth_timeout_sec: float = Field(
        default=5.0,
        validation_alias="AUTH_TIMEOUT_SEC",
        description="Timeout for the authorization collaborator. Expiry is a denial."
    )
    auth_breaker_fail_max: int = Field(
        default=5,
        validation_alias="AUTH_BREAKER_FAIL_MAX",
        description="Consecutive collaborator failures before the breaker opens."
    )
    auth_breaker_reset_timeout: int = Field(
        default=60,
        validation_alias="AUTH_BREAKER_RESET_TIMEOUT",
        description="Seconds an open breaker waits before letting a trial call through."
    )

    large_table_row_threshold: int = Field(
        default=10_000_000,
        validation_alias="LARGE_TABLE_ROW_THRESHOLD",
        description="Estimated row count above which a block must carry the parallel hint."
    )
    forbidden_token: str = Field(
        default="&",
        validation_alias="FORBIDDEN_TOKEN",
        description="Single symbol that may not appear anywhere in an artifact, comments included."
    )
    tenant_columns: List[str] = Field(
        default_factory=lambda: ["ORG_ID", "BU_ID", "LEDGER_ID", "LEGAL_ENTITY_ID", "SET_OF_BOOKS_ID"],
        validation_alias="TENANT_COLUMNS",
        description="Columns that scope a row to a tenant; joins between extracted entities must equate one."
    )
    optimizer_hints: List[str] = Field(
        default_factory=lambda: [
            "MATERIALIZE", "PARALLEL", "USE_HASH", "USE_NL", "LEADING",
            "NO_MERGE", "INDEX", "FULL", "CARDINALITY", "QB_NAME",
        ],
        validation_alias="OPTIMIZER_HINTS",
        description="Hints that satisfy the multi-reference hint requirement."
    )
    materialize_hint: str = Field(default="MATERIALIZE", validation_alias="MATERIALIZE_HINT")
    parallel_hint: str = Field(default="PARALLEL", validation_alias="PARALLEL_HINT")
    disallowed_join_keywords: List[str] = Field(
        default_factory=lambda: ["JOIN", "USING", "NATURAL"],
        validation_alias="DISALLOWED_JOIN_KEYWORDS",
        description="Keywords of the ANSI join form. Fragments must use traditional joins with (+) markers."
    )
    sql_dialect: str = Field(
        default="oracle",
        validation_alias="SQL_DIALECT",
        description="sqlglot dialect used to tokenize and parse fragments."
    )

    default_period_entity: str = Field(
        default="PERIOD_BOUNDS",
        validation_alias="DEFAULT_PERIOD_ENTITY",
        description="Period fragment used when a template does not name one."
    )
    date_parameter_suffixes: List[str] = Field(
        default_factory=lambda: ["_DATE", "_PERIOD"],
        validation_alias="DATE_PARAMETER_SUFFIXES",
        description="Binding names ending with one of these count as date parameters."
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    observability_exporter: str = Field(
        default="none",
        validation_alias="OBSERVABILITY_EXPORTER",
        description="Exporter for traces: 'none', 'console', 'otlp'. 'otlp' switches logs to JSON."
    )
    audit_log_path: str = Field(
        default="logs/audit_events.log",
        validation_alias="AUDIT_LOG_PATH",
        description="Path to the persistent audit log file."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def configure_env(self, env: str) -> None:
        """Loads environment-specific variables and reloads settings."""
        if not env:
            return

        load_dotenv(f".env.{env}", override=True)
        new_settings = Settings()
        self.__dict__.update(new_settings.__dict__)


settings = Settings()

# Configure logging during import
from govsql.common.logger import configure_logging
configure_logging(
    level=settings.log_level,
    json_format=(settings.observability_exporter == "otlp")
)
