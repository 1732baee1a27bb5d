from __future__ import annotations

from typing import Iterable, Protocol, Set, runtime_checkable

from .models import UserContext
from .rbac import RBAC


@runtime_checkable
class ModuleAuthorizationProvider(Protocol):
    """External collaborator that reports the modules a caller may query."""

    def list_modules(self) -> Iterable[str]:
        ...


class StaticModuleProvider:
    """Grants a fixed set of modules. Used for embedding and tests."""

    def __init__(self, modules: Iterable[str]):
        self._modules = frozenset(m.strip().upper() for m in modules)

    def list_modules(self) -> Set[str]:
        return set(self._modules)


class PolicyModuleProvider:
    """Resolves authorized modules from role policies for one user context."""

    def __init__(self, rbac: RBAC, user_context: UserContext):
        self.rbac = rbac
        self.user_context = user_context

    def list_modules(self) -> Set[str]:
        return self.rbac.get_allowed_modules(self.user_context)
