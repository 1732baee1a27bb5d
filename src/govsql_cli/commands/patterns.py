import pathlib
import sys
from typing import List, Optional, Tuple

import typer
from rich.table import Table
from typing_extensions import Annotated

from govsql.common.errors import PatternLoadError
from govsql.common.settings import settings
from govsql.configs import ConfigManager
from govsql.patterns import PatternStore, Stage
from govsql.pipeline.nodes.composer import ComposedArtifact, pattern_block
from govsql.pipeline.nodes.validator import ValidationPolicy
from govsql.pipeline.nodes.validator.rules import check_dialect, check_forbidden_token, check_hints
from govsql_cli.console import console, print_error, print_success

app = typer.Typer(help="Inspect and check the pattern library.")

PatternsOption = Annotated[
    Optional[pathlib.Path], typer.Option("--patterns", help="Pattern library directory or file")
]

# Fragment-level rules. Join and sequence rules need a composed report.
FRAGMENT_RULES = (check_dialect, check_forbidden_token, check_hints)


def _load(patterns: Optional[pathlib.Path]) -> PatternStore:
    target = patterns or pathlib.Path(settings.pattern_library_path)
    try:
        return ConfigManager().load_pattern_library(target)
    except PatternLoadError as e:
        print_error(str(e))
        sys.exit(1)


def lint_store(store: PatternStore, policy: Optional[ValidationPolicy] = None) -> List[Tuple[str, str, str, str]]:
    """Checks every fragment on its own and every template against the store.

    Returns:
        List of (module, entity, rule, message) rows, empty when clean.
    """
    policy = policy or ValidationPolicy.from_settings()
    issues: List[Tuple[str, str, str, str]] = []

    for module in sorted(store.modules()):
        for entity in store.entities_for(module):
            pattern = store.lookup(entity, module)
            artifact = ComposedArtifact(
                report_type="LIBRARY_CHECK",
                modules=(module,),
                blocks=(pattern_block(pattern, module),),
            )
            for rule in FRAGMENT_RULES:
                for violation in rule(artifact, policy):
                    issues.append((module, entity, violation.rule.value, violation.message))

    for template in store.templates():
        for module in sorted(template.modules):
            slots = [
                (entry, Stage.REPOSITORY) for entry in template.entities
            ] + [
                (entry, Stage.CALCULATION) for entry in template.calculations
            ] + [
                (entry, Stage.AGGREGATION) for entry in template.aggregations
            ]
            if template.projection.entity is not None:
                slots.append((template.projection.entity, Stage.FINAL))
            for entry, stage in slots:
                target = entry.module or module
                pattern = store.lookup(entry.entity, target)
                if pattern is None:
                    issues.append((target, entry.entity, "TEMPLATE", f"{template.name} needs a missing fragment."))
                elif pattern.stage != stage:
                    issues.append(
                        (target, entry.entity, "TEMPLATE",
                         f"{template.name} uses it as {stage.value}, fragment is {pattern.stage.value}.")
                    )
    return issues


@app.command("list")
def list_patterns(
    patterns: PatternsOption = None,
    module: Annotated[Optional[str], typer.Option("--module", help="Only show this module")] = None,
):
    """
    List fragments and report templates in the pattern library.
    """
    store = _load(patterns)

    table = Table(title="Pattern Library")
    table.add_column("Module", style="cyan")
    table.add_column("Entity", style="magenta")
    table.add_column("Stage")
    table.add_column("Version")
    table.add_column("Description", style="white")

    modules = [module.strip().upper()] if module else sorted(store.modules())
    for mod in modules:
        for entity in store.entities_for(mod):
            pattern = store.lookup(entity, mod)
            table.add_row(mod, entity, pattern.stage.value, pattern.version, pattern.description)
    console.print(table)

    templates = Table(title="Report Templates")
    templates.add_column("Report", style="cyan")
    templates.add_column("Modules")
    templates.add_column("Description", style="white")
    for template in sorted(store.templates(), key=lambda t: t.name):
        templates.add_row(template.name, ", ".join(sorted(template.modules)) or "*", template.description)
    console.print(templates)


@app.command("check")
def check(patterns: PatternsOption = None):
    """
    Load the pattern library and check every fragment and template.
    """
    store = _load(patterns)
    console.print(f"[info]Loaded {len(store)} fragment keys across {len(store.modules())} modules.[/info]")

    issues = lint_store(store)
    if not issues:
        print_success("Pattern library is clean.")
        return

    table = Table(title="Pattern Library Issues")
    table.add_column("Module", style="cyan")
    table.add_column("Entity", style="magenta")
    table.add_column("Rule", style="red")
    table.add_column("Details", style="white")
    for row in issues:
        table.add_row(*row)
    console.print(table)
    sys.exit(1)
