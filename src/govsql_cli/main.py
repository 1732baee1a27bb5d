#!/usr/bin/env python3
"""Unified CLI for the governed query composition engine."""
import pathlib
from typing import List, Optional

import typer
from typing_extensions import Annotated

from govsql.common.settings import settings
from govsql_cli.commands.generate import run_generate
from govsql_cli.commands.patterns import app as patterns_app

app = typer.Typer(
    name="govsql",
    help="Compose governed report SQL from a pre-approved pattern library.",
    no_args_is_help=True,
    add_completion=False,
)

app.add_typer(patterns_app, name="patterns", help="Inspect and check the pattern library.")

PatternsOption = Annotated[Optional[pathlib.Path], typer.Option("--patterns", help="Pattern library directory or file")]
PoliciesOption = Annotated[Optional[pathlib.Path], typer.Option("--policies", help="Path to policies.json")]


@app.callback()
def global_callback(
    env: Annotated[Optional[str], typer.Option("--env", "-e", help="Environment name (e.g. dev, prod). Loads .env.<env>.")] = None,
):
    """
    govsql CLI Entry Point.
    """
    if env:
        settings.configure_env(env)


@app.command()
def generate(
    request: Annotated[pathlib.Path, typer.Argument(help="Report request YAML file")],
    role: Annotated[Optional[List[str]], typer.Option("--role", help="Role ID for module policies (repeatable)")] = None,
    modules: Annotated[Optional[str], typer.Option("--modules", help="Grant exactly these modules (comma separated) instead of resolving roles")] = None,
    patterns: PatternsOption = None,
    policies: PoliciesOption = None,
):
    """
    Generate the SQL for one report request.

    Exit codes: 0 artifact, 2 clarification needed, 3 refused, 1 configuration error.
    """
    code = run_generate(
        request_path=request,
        roles=role or [],
        grant=modules,
        patterns_path=patterns,
        policies_path=policies,
    )
    raise typer.Exit(code=code)


if __name__ == "__main__":
    app()
