from govsql.auth.models import PolicyFileConfig, RolePolicy
from govsql.patterns.models import PatternFileConfig
from .manager import ConfigManager

__all__ = ["PolicyFileConfig", "RolePolicy", "PatternFileConfig", "ConfigManager"]
