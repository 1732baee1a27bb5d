import pathlib
from typing import List, Optional

from govsql.auth import PolicyModuleProvider, StaticModuleProvider, UserContext
from govsql.common.errors import ConfigError, PatternLoadError, RequestCancelled
from govsql.context import GovSQLContext
from govsql.pipeline.engine import Engine
from govsql.pipeline.results import ArtifactResult, ClarificationNeeded
from govsql_cli.console import print_error, print_plain

EXIT_ARTIFACT = 0
EXIT_CONFIG_ERROR = 1
EXIT_CLARIFICATION = 2
EXIT_REFUSAL = 3


def run_generate(
    request_path: pathlib.Path,
    roles: List[str],
    grant: Optional[str],
    patterns_path: Optional[pathlib.Path],
    policies_path: Optional[pathlib.Path],
) -> int:
    """Runs one request file through the engine and prints the rendering.

    Returns the process exit code.
    """
    try:
        ctx = GovSQLContext(pattern_library_path=patterns_path, policies_config_path=policies_path)
        request = ctx.config_manager.load_request(request_path)
    except (PatternLoadError, ConfigError) as e:
        print_error(str(e))
        return EXIT_CONFIG_ERROR

    if grant is not None:
        provider = StaticModuleProvider([m for m in grant.split(",") if m.strip()])
    else:
        provider = PolicyModuleProvider(ctx.rbac, UserContext(roles=roles))

    engine = Engine(ctx.store, provider)
    try:
        result = engine.generate(request)
    except RequestCancelled:
        print_error("Request cancelled.")
        return EXIT_REFUSAL

    print_plain(result.render())

    if isinstance(result, ArtifactResult):
        return EXIT_ARTIFACT
    if isinstance(result, ClarificationNeeded):
        return EXIT_CLARIFICATION
    return EXIT_REFUSAL
