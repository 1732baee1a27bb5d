from __future__ import annotations

import re
import traceback
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from govsql.pipeline.state import EngineState

from govsql.common.contracts import ReportRequest
from govsql.common.errors import EngineError, ErrorCode, ErrorSeverity
from govsql.common.logger import get_logger
from govsql.common.settings import settings
from govsql.common.tracing import span
from govsql.patterns.models import RepositoryPattern, ReportTemplate, Stage, TemplateEntry
from govsql.patterns.store import PatternStore
from govsql.pipeline.status import EngineStatus
from .schemas import Block, ComposedArtifact, MissingItem, MissingKind

logger = get_logger("composer")

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*(?!\+).*?\*/", re.DOTALL)
_BIND_VARIABLE = re.compile(r"(?<![\w:]):([A-Za-z][A-Za-z0-9_$#]*)")
_HINT_COMMENT = re.compile(r"/\*\+(.*?)\*/", re.DOTALL)
_HINT_NAME = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)\s*(?:\([^)]*\))?")


def normalize_hint(hint: str) -> str:
    """Reduces ``PARALLEL(8)`` or ``parallel (t 4)`` to ``PARALLEL``."""
    return hint.split("(", 1)[0].strip().upper()


def parse_hints(body: str) -> Set[str]:
    """Collects hint names from every ``/*+ ... */`` comment in a fragment."""
    found: Set[str] = set()
    for comment in _HINT_COMMENT.findall(body):
        for name in _HINT_NAME.findall(comment):
            found.add(name.upper())
    return found


def bind_variables(body: str) -> List[str]:
    """Returns bind variable names referenced by a fragment, in first-seen order.

    String literals and comments are removed first so that format masks such
    as ``'HH24:MI'`` are not mistaken for binds.
    """
    text = _STRING_LITERAL.sub("''", body)
    text = _BLOCK_COMMENT.sub(" ", text)
    text = _HINT_COMMENT.sub(" ", text)
    text = _LINE_COMMENT.sub(" ", text)
    names: List[str] = []
    for name in _BIND_VARIABLE.findall(text):
        name = name.upper()
        if name not in names:
            names.append(name)
    return names


def pattern_block(pattern: RepositoryPattern, module: str, reference_count: int = 0) -> Block:
    """Places a stored fragment into a block, merging declared and inline hints."""
    hints = {normalize_hint(h) for h in pattern.hints} | parse_hints(pattern.body)
    return Block(
        stage=pattern.stage,
        name=pattern.name,
        body=pattern.body,
        description=pattern.description,
        hints=frozenset(hints),
        join_keys=pattern.joins,
        module=module,
        pattern_version=pattern.version,
        exposes=pattern.exposes,
        depends_on=pattern.depends_on,
        reference_count=reference_count,
        requires_materialization=pattern.requires_materialization,
        estimated_rows=pattern.estimated_rows,
        multi_reference=pattern.multi_reference or reference_count >= 2,
    )


class _Halt(Exception):
    """Stops composition at the first missing item."""

    def __init__(self, item: MissingItem):
        super().__init__(item.describe())
        self.item = item


class TemplateComposer:
    """Assembles pre-approved fragments into a staged draft artifact.

    Every fragment comes from the PatternStore. A lookup miss halts
    composition and is reported as a MissingItem; the composer never writes a
    substitute fragment. The only text it generates itself is the final
    projection, which selects exposed columns from one upstream block.
    """

    def __init__(
        self,
        store: PatternStore,
        date_parameter_suffixes: Optional[Sequence[str]] = None,
        default_period_entity: Optional[str] = None,
    ):
        self.store = store
        self.date_parameter_suffixes = tuple(
            date_parameter_suffixes if date_parameter_suffixes is not None else settings.date_parameter_suffixes
        )
        self.default_period_entity = (default_period_entity or settings.default_period_entity).upper()

    def compose(self, request: ReportRequest) -> Union[ComposedArtifact, MissingItem]:
        """Builds a draft artifact for the request.

        Args:
            request (ReportRequest): The authorized request.

        Returns:
            Union[ComposedArtifact, MissingItem]: The draft, or the first item
            that could not be resolved.
        """
        template = self.store.template(request.report_type)
        if template is None:
            return MissingItem(kind=MissingKind.TEMPLATE, entity=request.report_type)
        if template.modules and not (template.modules & request.modules):
            return MissingItem(
                kind=MissingKind.TEMPLATE,
                entity=template.name,
                module=",".join(sorted(request.modules)),
            )

        try:
            blocks = self._compose_blocks(request, template)
            self._check_bindings(blocks, request.parameters)
        except _Halt as halt:
            logger.info("Composition halted: %s %s", halt.item.kind.value, halt.item.entity)
            return halt.item

        artifact = ComposedArtifact(
            report_type=template.name,
            modules=tuple(sorted(request.referenced_modules | {b.module for b in blocks})),
            header=self._header(template, request, blocks),
            blocks=tuple(blocks),
            parameters=dict(request.parameters),
        )
        logger.info("Composed %s with %d blocks", template.name, len(blocks))
        logger.debug("Draft artifact:\n%s", artifact.render())
        return artifact

    def _resolve_module(self, entity: str, module: Optional[str], request: ReportRequest) -> str:
        if module:
            # a template pin is only followed into modules the request names
            if module not in request.referenced_modules:
                raise _Halt(
                    MissingItem(
                        kind=MissingKind.MODULE,
                        entity=entity,
                        module=module,
                        detail=f"pinned to {module}, which the request does not name",
                    )
                )
            return module
        if len(request.modules) == 1:
            return next(iter(request.modules))
        raise _Halt(
            MissingItem(
                kind=MissingKind.MODULE,
                entity=entity,
                detail=f"request spans {', '.join(sorted(request.modules))}",
            )
        )

    def _lookup(self, entity: str, module: str, stage: Stage) -> RepositoryPattern:
        pattern = self.store.lookup(entity, module)
        if pattern is None:
            raise _Halt(MissingItem(kind=MissingKind.PATTERN, entity=entity, module=module))
        if pattern.stage != stage:
            raise _Halt(
                MissingItem(
                    kind=MissingKind.PATTERN,
                    entity=entity,
                    module=module,
                    detail=f"{stage.value} stage expected, found {pattern.stage.value}",
                )
            )
        return pattern

    def _entries(
        self, entries: Iterable[TemplateEntry], request: ReportRequest
    ) -> List[Tuple[str, str]]:
        return [(e.entity, self._resolve_module(e.entity, e.module, request)) for e in entries]

    def _repository_slots(self, request: ReportRequest, template: ReportTemplate) -> List[Tuple[str, str]]:
        slots: List[Tuple[str, str]] = []
        for ref in request.entities:
            slot = (ref.name, self._resolve_module(ref.name, ref.module, request))
            if slot not in slots:
                slots.append(slot)
        for slot in self._entries(template.entities, request):
            if slot not in slots:
                slots.append(slot)
        return slots

    def _compose_blocks(self, request: ReportRequest, template: ReportTemplate) -> List[Block]:
        repository = self._repository_slots(request, template)
        staged: Dict[Stage, List[Tuple[RepositoryPattern, str]]] = {stage: [] for stage in Stage}

        if request.has_date_parameters(self.date_parameter_suffixes):
            period_entity = template.period or self.default_period_entity
            period_modules: List[str] = []
            for _, module in repository:
                if module not in period_modules:
                    period_modules.append(module)
            if not period_modules:
                period_modules = sorted(request.modules)
            for module in period_modules:
                staged[Stage.PERIOD].append((self._lookup(period_entity, module, Stage.PERIOD), module))

        for entity, module in repository:
            staged[Stage.REPOSITORY].append((self._lookup(entity, module, Stage.REPOSITORY), module))
        for entity, module in self._entries(template.calculations, request):
            staged[Stage.CALCULATION].append((self._lookup(entity, module, Stage.CALCULATION), module))
        for entity, module in self._entries(template.aggregations, request):
            staged[Stage.AGGREGATION].append((self._lookup(entity, module, Stage.AGGREGATION), module))

        ordered: List[RepositoryPattern] = []
        modules: Dict[str, str] = {}
        for stage in (Stage.PERIOD, Stage.REPOSITORY, Stage.CALCULATION, Stage.AGGREGATION):
            bucket: List[RepositoryPattern] = []
            for pattern, module in staged[stage]:
                if not self._admit(pattern, module, modules):
                    continue
                bucket.append(pattern)
            ordered.extend(_dependency_order(bucket))

        final, final_module = self._final(request, template)
        if final is not None:
            self._admit(final, final_module, modules)
            ordered.append(final)

        names = {p.name for p in ordered}
        for pattern in ordered:
            for dependency in pattern.depends_on:
                if dependency not in names:
                    self._check_period_binding(dependency, modules[pattern.name], request)
                    raise _Halt(
                        MissingItem(
                            kind=MissingKind.PATTERN,
                            entity=dependency,
                            module=modules[pattern.name],
                            detail=f"required by {pattern.name}",
                        )
                    )

        blocks = [self._to_block(p, modules[p.name], ordered) for p in ordered]
        if final is None:
            projection = self._projection(template, blocks)
            source = projection.depends_on[0]
            blocks = [
                b.model_copy(update=_reference_fields(b, b.reference_count + 1)) if b.name == source else b
                for b in blocks
            ]
            blocks.append(projection)
        return blocks

    def _check_period_binding(self, dependency: str, module: str, request: ReportRequest) -> None:
        """A period fragment is only composed when the request binds a date, so ask for that binding."""
        if request.has_date_parameters(self.date_parameter_suffixes):
            return
        period = self.store.lookup(dependency, module)
        if period is None or period.stage != Stage.PERIOD:
            return
        unbound = [name for name in bind_variables(period.body) if name not in request.parameters]
        raise _Halt(
            MissingItem(
                kind=MissingKind.PARAMETER,
                entity=unbound[0] if unbound else "date parameter",
                module=module,
                detail=f"used by {dependency}",
            )
        )

    def _admit(self, pattern: RepositoryPattern, module: str, modules: Dict[str, str]) -> bool:
        """Registers a pattern's CTE name. A fragment shared across modules is kept once."""
        known = modules.get(pattern.name)
        if known is None:
            modules[pattern.name] = module
            return True
        if self.store.lookup(pattern.name, known) == pattern:
            return False
        raise _Halt(
            MissingItem(
                kind=MissingKind.PATTERN,
                entity=pattern.name,
                module=module,
                detail=f"conflicts with the fragment already composed for module {known}",
            )
        )

    def _final(
        self, request: ReportRequest, template: ReportTemplate
    ) -> Tuple[Optional[RepositoryPattern], Optional[str]]:
        entry = template.projection.entity
        if entry is None:
            return None, None
        module = self._resolve_module(entry.entity, entry.module, request)
        return self._lookup(entry.entity, module, Stage.FINAL), module

    def _projection(self, template: ReportTemplate, blocks: List[Block]) -> Block:
        """Generates the final SELECT over the exposed columns of one block."""
        shape = template.projection
        if not blocks:
            raise _Halt(
                MissingItem(kind=MissingKind.PATTERN, entity=template.name, detail="no blocks to project from")
            )

        source = blocks[-1]
        if shape.source:
            found = [b for b in blocks if b.name == shape.source]
            if not found:
                raise _Halt(
                    MissingItem(
                        kind=MissingKind.PATTERN,
                        entity=shape.source,
                        module=source.module,
                        detail="projection source is not part of the report",
                    )
                )
            source = found[0]

        columns = shape.columns or source.exposes
        if not columns:
            raise _Halt(MissingItem(kind=MissingKind.DDL, entity="exposed columns", detail=source.name))
        for column in tuple(columns) + tuple(shape.order_by):
            if column not in source.exposes:
                raise _Halt(MissingItem(kind=MissingKind.DDL, entity=column, detail=source.name))

        lines = [f"SELECT {', '.join(columns)}", f"FROM {source.name}"]
        if shape.order_by:
            lines.append(f"ORDER BY {', '.join(shape.order_by)}")

        return Block(
            stage=Stage.FINAL,
            name=f"{template.name}_PROJECTION",
            body="\n".join(lines),
            module=source.module,
            exposes=tuple(columns),
            depends_on=(source.name,),
        )

    def _to_block(self, pattern: RepositoryPattern, module: str, ordered: List[RepositoryPattern]) -> Block:
        reference_count = sum(1 for other in ordered if pattern.name in other.depends_on)
        return pattern_block(pattern, module, reference_count)

    def _check_bindings(self, blocks: List[Block], parameters: Dict[str, Any]) -> None:
        for block in blocks:
            for name in bind_variables(block.body):
                if name not in parameters:
                    raise _Halt(
                        MissingItem(
                            kind=MissingKind.PARAMETER,
                            entity=name,
                            module=block.module,
                            detail=f"used by {block.name}",
                        )
                    )

    def _header(self, template: ReportTemplate, request: ReportRequest, blocks: List[Block]) -> Tuple[str, ...]:
        modules = sorted(request.referenced_modules | {b.module for b in blocks})
        parameters = ", ".join(sorted(request.parameters)) or "none"
        patterns = ", ".join(b.pattern_key for b in blocks if b.pattern_key) or "none"
        return (
            f"Report: {template.name}",
            f"Modules: {', '.join(modules)}",
            f"Parameters: {parameters}",
            f"Patterns: {patterns}",
        )


def _reference_fields(block: Block, reference_count: int) -> Dict[str, Any]:
    return {
        "reference_count": reference_count,
        "multi_reference": block.multi_reference or reference_count >= 2,
    }


def _dependency_order(patterns: List[RepositoryPattern]) -> List[RepositoryPattern]:
    """Stable topological sort within one stage.

    Dependencies outside the bucket are ignored here. Cycles keep their
    original order and are reported later by the stage sequence check.
    """
    names = {p.name for p in patterns}
    placed: List[RepositoryPattern] = []
    placed_names: Set[str] = set()
    remaining = list(patterns)

    while remaining:
        for i, pattern in enumerate(remaining):
            local = [d for d in pattern.depends_on if d in names]
            if all(d in placed_names for d in local):
                placed.append(pattern)
                placed_names.add(pattern.name)
                del remaining[i]
                break
        else:
            placed.extend(remaining)
            break

    return placed


class ComposerNode:
    """Graph node wrapping the TemplateComposer."""

    def __init__(self, composer: TemplateComposer):
        self.node_name = "composer"
        self.composer = composer

    def __call__(self, state: EngineState) -> Dict[str, Any]:
        with span("govsql.compose", {"report_type": state.request.report_type}):
            try:
                result = self.composer.compose(state.request)
            except Exception as exc:
                logger.exception("Composer crashed")
                return {
                    "status": EngineStatus.DONE,
                    "errors": [
                        EngineError(
                            node=self.node_name,
                            message=f"Composer crashed: {exc}",
                            severity=ErrorSeverity.CRITICAL,
                            error_code=ErrorCode.COMPOSER_CRASH,
                            stack_trace=traceback.format_exc(),
                        )
                    ],
                }

        if isinstance(result, MissingItem):
            return {"missing": result, "status": EngineStatus.DONE}
        return {"draft": result, "status": EngineStatus.VALIDATING}
