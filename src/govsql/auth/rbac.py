from typing import Iterable, List, Optional, Set

from .models import PolicyFileConfig, UserContext


class RBAC:
    def __init__(self, policies_cfg: PolicyFileConfig, known_modules: Optional[Iterable[str]] = None):
        self.policies_cfg = policies_cfg
        self.known_modules = {m.upper() for m in (known_modules or [])}

    def _policies(self, user_ctx: UserContext):
        policies = [self.policies_cfg.get_role(role) for role in user_ctx.roles]
        return [p for p in policies if p is not None]

    def get_allowed_modules(self, user_ctx: UserContext) -> Set[str]:
        """Union of the modules granted by every role the user holds.

        Unknown roles grant nothing. A '*' grant expands to the modules the
        pattern library knows about, never to an open-ended allow.
        """
        policies = self._policies(user_ctx)
        if not policies:
            return set()
        allowed: Set[str] = set()
        for policy in policies:
            if "*" in policy.allowed_modules:
                allowed |= self.known_modules
            allowed |= {m for m in policy.allowed_modules if m != "*"}
        return allowed

    def get_roles(self) -> List[str]:
        return sorted(self.policies_cfg.roles)
