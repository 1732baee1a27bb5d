import yaml
import json
import pathlib
from typing import List, Optional
from pydantic import ValidationError

from govsql.common.errors import ConfigError, PatternLoadError
from govsql.common.logger import get_logger
from govsql.common.settings import settings
from govsql.common.contracts import ReportRequest
from govsql.auth.models import PolicyFileConfig
from govsql.patterns.models import PatternFileConfig, RepositoryPattern, ReportTemplate
from govsql.patterns.store import PatternStore

logger = get_logger("config_manager")

PATTERN_FILE_SUFFIXES = (".yaml", ".yml")


class ConfigManager:
    """
    Centralized manager for reading application configuration.
    Handles file I/O for the pattern library, role policies and report requests.
    """

    def __init__(self, project_root: Optional[pathlib.Path] = None):
        """
        Args:
            project_root: Optional override for project root.
                          If None, paths from settings are resolved against CWD.
        """
        self.project_root = project_root

        root = self.project_root or pathlib.Path.cwd()

        self._patterns_path = root / settings.pattern_library_path
        self._policy_path = root / settings.policies_config_path

    def _pattern_files(self, target: pathlib.Path) -> List[pathlib.Path]:
        if target.is_file():
            return [target]
        return sorted(p for p in target.iterdir() if p.suffix.lower() in PATTERN_FILE_SUFFIXES)

    def load_pattern_library(self, path: Optional[pathlib.Path] = None) -> PatternStore:
        """
        Loads every YAML file of the pattern library and builds a PatternStore.
        Any parse or schema error aborts the load; a partial library is never returned.
        """
        target_path = path or self._patterns_path

        if not target_path.exists():
            raise PatternLoadError(f"Pattern library not found: {target_path}")

        patterns: List[RepositoryPattern] = []
        templates: List[ReportTemplate] = []

        for file_path in self._pattern_files(target_path):
            try:
                raw = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as e:
                raise PatternLoadError(f"Failed to parse YAML from {file_path}: {e}") from e

            try:
                file_config = PatternFileConfig.model_validate(raw)
                patterns.extend(file_config.build_patterns())
                templates.extend(file_config.templates)
            except ValidationError as e:
                raise PatternLoadError(f"Pattern library file {file_path.name} invalid: {e}") from e

            logger.debug("Loaded pattern file %s", file_path)

        return PatternStore(patterns=patterns, templates=templates)

    def load_policies(self, path: Optional[pathlib.Path] = None) -> PolicyFileConfig:
        """
        Loads role policy configuration.
        Returns govsql.auth.PolicyFileConfig object.
        """
        target_path = path or self._policy_path

        if not target_path.exists():
            raise ConfigError(f"Policy config not found: {target_path}")

        try:
            data = json.loads(target_path.read_text(encoding="utf-8"))
            return PolicyFileConfig.model_validate(data)
        except ValidationError as ve:
            raise ConfigError(f"Policy Schema Validation Failed: {ve}") from ve
        except json.JSONDecodeError as e:
            raise ConfigError(f"Failed to load policies: {e}") from e

    def load_request(self, path: pathlib.Path) -> ReportRequest:
        """Loads a structured report request from YAML (or JSON, which YAML accepts)."""
        if not path.exists():
            raise ConfigError(f"Request file not found: {path}")

        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse request {path}: {e}") from e

        try:
            return ReportRequest.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Report request invalid: {e}") from e
