"""
Public API for the govsql package

Stable entry point for embedding the composition engine. Loads the pattern
library and role policies once and builds an Engine per caller.
"""

from __future__ import annotations

import pathlib
from typing import Any, Dict, List, Optional, Union

from govsql.auth import ModuleAuthorizationProvider, PolicyModuleProvider, UserContext
from govsql.common.cancellation import CancellationToken
from govsql.common.contracts import ReportRequest
from govsql.context import GovSQLContext
from govsql.pipeline.engine import Engine
from govsql.pipeline.nodes.validator import ValidationPolicy
from govsql.pipeline.results import EngineResult


class GovSQL:
    """
    Public API for the governed query composition engine.

    Authorization comes either from the role policies (``user_context``) or
    from an explicit ``provider``. Exactly one of them is consulted per
    request.
    """

    def __init__(
        self,
        pattern_library_path: Optional[Union[str, pathlib.Path]] = None,
        policies_config_path: Optional[Union[str, pathlib.Path]] = None,
        policy: Optional[ValidationPolicy] = None,
    ):
        """
        Args:
            pattern_library_path: Directory (or single file) of the YAML pattern library.
            policies_config_path: Path to the JSON role policies.
            policy: Override for the artifact rule parameters.
        """
        if pattern_library_path:
            pattern_library_path = pathlib.Path(pattern_library_path)
        if policies_config_path:
            policies_config_path = pathlib.Path(policies_config_path)

        self._ctx = GovSQLContext(
            pattern_library_path=pattern_library_path,
            policies_config_path=policies_config_path,
        )
        self._policy = policy

    @property
    def context(self) -> GovSQLContext:
        """Access to the underlying context (internal use only)."""
        return self._ctx

    def engine_for(self, provider: ModuleAuthorizationProvider, **kwargs: Any) -> Engine:
        return Engine(self._ctx.store, provider, policy=self._policy, **kwargs)

    def generate(
        self,
        request: Union[ReportRequest, Dict[str, Any]],
        user_context: Optional[UserContext] = None,
        provider: Optional[ModuleAuthorizationProvider] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EngineResult:
        """
        Runs one report request.

        Without a provider the caller's roles are resolved against the role
        policies; a caller without roles is authorized for nothing.
        """
        if not isinstance(request, ReportRequest):
            request = ReportRequest.model_validate(request)
        if provider is None:
            provider = PolicyModuleProvider(self._ctx.rbac, user_context or UserContext())
        return self.engine_for(provider).generate(request, cancel_token=cancel_token)

    def list_templates(self) -> List[str]:
        return sorted(t.name for t in self._ctx.store.templates())

    def list_modules(self) -> List[str]:
        return sorted(self._ctx.store.modules())

    def list_roles(self) -> List[str]:
        return self._ctx.rbac.get_roles()
