from __future__ import annotations
import pathlib
from typing import Optional

from govsql.auth import RBAC, PolicyFileConfig
from govsql.common.logger import get_logger
from govsql.common.settings import settings
from govsql.configs import ConfigManager

logger = get_logger("context")


class GovSQLContext:
    """
    Centralized application context that manages the initialization lifecycle.

    Loads the pattern library first, then the role policies, so that a '*'
    grant can be expanded to the modules the library actually knows.
    """

    def __init__(
        self,
        pattern_library_path: Optional[pathlib.Path] = None,
        policies_config_path: Optional[pathlib.Path] = None,
    ):
        """
        Resolves defaults from global settings if paths are not provided.
        A missing policies file yields an empty policy set, which grants nothing.
        """
        pattern_library_path = pattern_library_path or pathlib.Path(settings.pattern_library_path)
        policies_config_path = policies_config_path or pathlib.Path(settings.policies_config_path)

        cm = ConfigManager()
        self.config_manager = cm

        self.store = cm.load_pattern_library(pattern_library_path)

        if policies_config_path.exists():
            self.policies_cfg = cm.load_policies(policies_config_path)
        else:
            logger.warning("Policy config %s not found; no role grants any module.", policies_config_path)
            self.policies_cfg = PolicyFileConfig()

        self.rbac = RBAC(self.policies_cfg, known_modules=self.store.modules())
