"""Artifact rules.

Each rule takes a draft artifact and a ValidationPolicy and returns every
violation it finds. Rules never modify the artifact.
"""
from __future__ import annotations

import re
from itertools import combinations
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple

import sqlglot
from pydantic import BaseModel, ConfigDict, Field
from sqlglot import expressions as exp
from sqlglot.tokens import TokenType

from govsql.common.settings import Settings, settings
from govsql.patterns.models import Stage
from govsql.pipeline.nodes.composer.node import normalize_hint
from govsql.pipeline.nodes.composer.schemas import Block, ComposedArtifact
from .schemas import ConstraintViolation, RuleId

_HINT_COMMENT = re.compile(r"/\*\+.*?\*/", re.DOTALL)
_EQUALITY = re.compile(
    r"^\s*(?:[A-Za-z][\w$#]*\.)?([A-Za-z][\w$#]*)\s*(?:\(\+\))?\s*=\s*"
    r"(?:[A-Za-z][\w$#]*\.)?([A-Za-z][\w$#]*)\s*(?:\(\+\))?\s*$"
)
_WHITESPACE = re.compile(r"\s+")
_OUTER_JOIN_MARK = re.compile(r"\(\s*\+\s*\)")
_WORD = re.compile(r"[A-Za-z][\w$#]*")
_ARITHMETIC = (exp.Add, exp.Sub, exp.Mul, exp.Div, exp.Mod, exp.DPipe)


class ValidationPolicy(BaseModel):
    """Rule parameters. Built from settings by default, overridable in tests."""

    model_config = ConfigDict(frozen=True)

    dialect: str = "oracle"
    disallowed_join_keywords: FrozenSet[str] = frozenset({"JOIN", "USING", "NATURAL"})
    forbidden_token: str = Field(default="&", min_length=1)
    tenant_columns: FrozenSet[str] = frozenset({"ORG_ID", "BU_ID", "LEDGER_ID", "LEGAL_ENTITY_ID", "SET_OF_BOOKS_ID"})
    optimizer_hints: FrozenSet[str] = frozenset(
        {"MATERIALIZE", "PARALLEL", "USE_HASH", "USE_NL", "LEADING", "NO_MERGE", "INDEX", "FULL", "CARDINALITY", "QB_NAME"}
    )
    materialize_hint: str = "MATERIALIZE"
    parallel_hint: str = "PARALLEL"
    large_table_row_threshold: int = 10_000_000

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "ValidationPolicy":
        s = source or settings
        return cls(
            dialect=s.sql_dialect,
            disallowed_join_keywords=frozenset(k.upper() for k in s.disallowed_join_keywords),
            forbidden_token=s.forbidden_token,
            tenant_columns=frozenset(c.upper() for c in s.tenant_columns),
            optimizer_hints=frozenset(normalize_hint(h) for h in s.optimizer_hints),
            materialize_hint=normalize_hint(s.materialize_hint),
            parallel_hint=normalize_hint(s.parallel_hint),
            large_table_row_threshold=s.large_table_row_threshold,
        )


Rule = Callable[[ComposedArtifact, ValidationPolicy], List[ConstraintViolation]]


def _violation(rule: RuleId, block: Optional[Block], message: str) -> ConstraintViolation:
    return ConstraintViolation(rule=rule, block=block.name if block else None, message=message)


def check_dialect(artifact: ComposedArtifact, policy: ValidationPolicy) -> List[ConstraintViolation]:
    """Rejects ANSI join syntax. Joins must be written in the WHERE clause with (+)."""
    violations: List[ConstraintViolation] = []
    for block in artifact.blocks:
        text = _HINT_COMMENT.sub(" ", block.body)
        try:
            tokens = sqlglot.tokenize(text, read=policy.dialect)
        except Exception as exc:
            violations.append(_violation(RuleId.DIALECT, block, f"Fragment could not be tokenized: {exc}"))
            continue

        found = set()
        for token in tokens:
            if token.token_type in (TokenType.STRING, TokenType.IDENTIFIER):
                continue
            word = token.text.upper()
            if token.token_type == TokenType.JOIN or word in policy.disallowed_join_keywords:
                found.add(word)
        if found:
            violations.append(
                _violation(
                    RuleId.DIALECT,
                    block,
                    f"ANSI join keywords {sorted(found)} are not allowed; use traditional joins.",
                )
            )
    return violations


def check_hints(artifact: ComposedArtifact, policy: ValidationPolicy) -> List[ConstraintViolation]:
    violations: List[ConstraintViolation] = []
    for block in artifact.blocks:
        if (
            block.stage in (Stage.REPOSITORY, Stage.CALCULATION)
            and block.multi_reference
            and not (block.hints & policy.optimizer_hints)
        ):
            violations.append(
                _violation(
                    RuleId.HINT_PRESENCE,
                    block,
                    f"Block is referenced {block.reference_count} times but carries no optimizer hint.",
                )
            )
        if block.requires_materialization and policy.materialize_hint not in block.hints:
            violations.append(
                _violation(RuleId.HINT_PRESENCE, block, f"Reused or complex block needs {policy.materialize_hint}.")
            )
        if (
            block.estimated_rows is not None
            and block.estimated_rows > policy.large_table_row_threshold
            and policy.parallel_hint not in block.hints
        ):
            violations.append(
                _violation(
                    RuleId.HINT_PRESENCE,
                    block,
                    f"Block reads about {block.estimated_rows} rows and needs {policy.parallel_hint}.",
                )
            )
    return violations


def check_forbidden_token(artifact: ComposedArtifact, policy: ValidationPolicy) -> List[ConstraintViolation]:
    token = policy.forbidden_token
    violations: List[ConstraintViolation] = []
    if any(token in line for line in artifact.header):
        violations.append(_violation(RuleId.FORBIDDEN_TOKEN, None, "Forbidden token in header."))
    for block in artifact.blocks:
        if token in block.body or token in block.description:
            violations.append(_violation(RuleId.FORBIDDEN_TOKEN, block, "Forbidden token in block text."))
    return violations


def _squash(text: str) -> str:
    return _WHITESPACE.sub("", text).upper()


def tenant_predicate(predicate: str, tenant_columns: FrozenSet[str]) -> Optional[Tuple[str, str]]:
    """Returns the column pair if the predicate equates two tenant columns."""
    match = _EQUALITY.match(predicate)
    if not match:
        return None
    left, right = match.group(1).upper(), match.group(2).upper()
    if left in tenant_columns and right in tenant_columns:
        return left, right
    return None


def _table_scope(node: exp.Expression) -> int:
    return id(node.find_ancestor(exp.Select))


def _text_joins(block: Block, repository: FrozenSet[str], policy: ValidationPolicy) -> List[ConstraintViolation]:
    """Finds every pair of extraction blocks read by one SELECT and checks it is tenant-scoped.

    Works from the block body alone, so a join the author never declared is
    still checked. Outer join markers are dropped before parsing; they do not
    change which columns are equated.
    """
    text = _OUTER_JOIN_MARK.sub("", _HINT_COMMENT.sub(" ", block.body))
    mentions = [word for word in _WORD.findall(text.upper()) if word in repository]
    if len(mentions) < 2:
        return []

    try:
        tree = sqlglot.parse_one(text, read=policy.dialect)
    except Exception as exc:
        message = f"Block reads {sorted(set(mentions))} but could not be parsed: {exc}"
        return [_violation(RuleId.TENANT_SCOPE, block, message)]

    scopes: Dict[int, Dict[str, str]] = {}
    for table in tree.find_all(exp.Table):
        name = table.name.upper()
        if name in repository:
            scopes.setdefault(_table_scope(table), {})[(table.alias or table.name).upper()] = name

    scoped: Set[FrozenSet[str]] = set()
    for equality in tree.find_all(exp.EQ):
        left, right = equality.this, equality.expression
        if not (isinstance(left, exp.Column) and isinstance(right, exp.Column)):
            continue
        if left.name.upper() in policy.tenant_columns and right.name.upper() in policy.tenant_columns:
            scoped.add(frozenset((left.table.upper(), right.table.upper())))

    violations: List[ConstraintViolation] = []
    for aliases in scopes.values():
        for left, right in combinations(sorted(aliases), 2):
            if frozenset((left, right)) not in scoped:
                violations.append(
                    _violation(
                        RuleId.TENANT_SCOPE,
                        block,
                        f"{aliases[left]} {left} and {aliases[right]} {right} are joined "
                        "without a tenant-scoping equality.",
                    )
                )
    return violations


def check_tenant_scope(artifact: ComposedArtifact, policy: ValidationPolicy) -> List[ConstraintViolation]:
    """Every join between two extraction blocks must equate a tenant column in the block text.

    Declared joins are checked against the author's predicates, and the body
    itself is parsed for joins the declarations leave out.
    """
    repository = frozenset(b.name for b in artifact.blocks if b.stage == Stage.REPOSITORY)
    violations: List[ConstraintViolation] = []

    for block in artifact.blocks:
        body = _squash(block.body)
        for join in block.join_keys:
            if join.left not in repository or join.right not in repository:
                continue
            scoped = [p for p in join.predicates if tenant_predicate(p, policy.tenant_columns)]
            if not scoped:
                violations.append(
                    _violation(
                        RuleId.TENANT_SCOPE,
                        block,
                        f"Join {join.left} to {join.right} has no tenant-scoping equality.",
                    )
                )
            elif not any(_squash(p) in body for p in scoped):
                violations.append(
                    _violation(
                        RuleId.TENANT_SCOPE,
                        block,
                        f"Tenant-scoping equality for {join.left} to {join.right} is missing from the block text.",
                    )
                )
        violations.extend(_text_joins(block, repository - {block.name}, policy))
    return violations


def check_stage_sequence(artifact: ComposedArtifact, policy: ValidationPolicy) -> List[ConstraintViolation]:
    violations: List[ConstraintViolation] = []
    seen: List[str] = []
    last_rank = -1

    for block in artifact.blocks:
        if block.stage.rank < last_rank:
            violations.append(
                _violation(RuleId.STAGE_SEQUENCE, block, f"{block.stage.value} block appears after a later stage.")
            )
        last_rank = max(last_rank, block.stage.rank)
        if block.name in seen:
            violations.append(_violation(RuleId.STAGE_SEQUENCE, block, "Block name is used more than once."))
        for dependency in block.depends_on:
            if dependency not in seen:
                violations.append(
                    _violation(RuleId.STAGE_SEQUENCE, block, f"Depends on {dependency}, which is not defined earlier.")
                )
        seen.append(block.name)

    finals = [b for b in artifact.blocks if b.stage == Stage.FINAL]
    if len(finals) != 1:
        violations.append(
            _violation(RuleId.STAGE_SEQUENCE, None, f"Expected exactly one final block, found {len(finals)}.")
        )
    elif artifact.blocks[-1].stage != Stage.FINAL:
        violations.append(_violation(RuleId.STAGE_SEQUENCE, finals[0], "Final block is not last."))
    return violations


def check_projection_purity(artifact: ComposedArtifact, policy: ValidationPolicy) -> List[ConstraintViolation]:
    """The final block may only pick columns from one source."""
    block = artifact.final_block
    if block is None:
        return []

    try:
        tree = sqlglot.parse_one(block.body, read=policy.dialect)
    except Exception as exc:
        return [_violation(RuleId.PROJECTION_PURITY, block, f"Final block could not be parsed: {exc}")]

    if not isinstance(tree, exp.Select):
        return [_violation(RuleId.PROJECTION_PURITY, block, "Final block must be a single plain SELECT.")]

    problems = []
    for node_type, label in (
        (exp.Where, "filter"),
        (exp.Group, "grouping"),
        (exp.Having, "group filter"),
        (exp.Join, "join"),
        (exp.Case, "conditional expression"),
        (exp.Subquery, "nested query"),
        (exp.With, "nested CTE"),
        (exp.Func, "function call"),
    ):
        if tree.find(node_type) is not None:
            problems.append(label)
    if tree.find(*_ARITHMETIC) is not None:
        problems.append("arithmetic")
    if len(list(tree.find_all(exp.Table))) != 1:
        problems.append("more than one source")
    for projection in tree.expressions:
        target = projection.this if isinstance(projection, exp.Alias) else projection
        if not isinstance(target, (exp.Column, exp.Star)):
            problems.append("computed column")
            break

    if problems:
        return [
            _violation(
                RuleId.PROJECTION_PURITY,
                block,
                f"Final block carries logic: {', '.join(sorted(set(problems)))}.",
            )
        ]
    return []


RULES: Tuple[Tuple[RuleId, Rule], ...] = (
    (RuleId.DIALECT, check_dialect),
    (RuleId.HINT_PRESENCE, check_hints),
    (RuleId.FORBIDDEN_TOKEN, check_forbidden_token),
    (RuleId.TENANT_SCOPE, check_tenant_scope),
    (RuleId.STAGE_SEQUENCE, check_stage_sequence),
    (RuleId.PROJECTION_PURITY, check_projection_purity),
)
