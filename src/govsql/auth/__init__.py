from .models import UserContext, RolePolicy, PolicyFileConfig
from .rbac import RBAC
from .providers import ModuleAuthorizationProvider, StaticModuleProvider, PolicyModuleProvider

__all__ = [
    "UserContext",
    "RBAC",
    "RolePolicy",
    "PolicyFileConfig",
    "ModuleAuthorizationProvider",
    "StaticModuleProvider",
    "PolicyModuleProvider",
]
