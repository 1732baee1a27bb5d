from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from govsql.patterns.models import JoinCondition, Stage


class MissingKind(str, Enum):
    PATTERN = "pattern"
    TEMPLATE = "template"
    MODULE = "module"
    DDL = "ddl"
    PARAMETER = "parameter"


class MissingItem(BaseModel):
    """Something the composer needed and could not find.

    Rendered to the caller as a clarification request. Never contains SQL.
    """

    model_config = ConfigDict(frozen=True)

    kind: MissingKind
    entity: str
    module: Optional[str] = None
    detail: Optional[str] = None

    def describe(self) -> str:
        if self.kind == MissingKind.PATTERN:
            text = f"repository pattern {self.entity}"
            if self.module:
                text += f" for module {self.module}"
        elif self.kind == MissingKind.TEMPLATE:
            text = f"report template {self.entity}"
            if self.module:
                text += f" for module {self.module}"
        elif self.kind == MissingKind.MODULE:
            text = f"module for entity {self.entity}"
        elif self.kind == MissingKind.DDL:
            text = f"column definition {self.entity}"
            if self.detail:
                text += f" in {self.detail}"
            return f"Clarification needed: {text}."
        else:
            text = f"binding for parameter {self.entity}"
            if self.module:
                text += f" in module {self.module}"

        if self.detail:
            text += f" ({self.detail})"
        return f"Clarification needed: {text}."


class Block(BaseModel):
    """One stage fragment placed in a composed artifact."""

    model_config = ConfigDict(frozen=True)

    stage: Stage
    name: str
    body: str
    description: str = ""
    hints: FrozenSet[str] = Field(default_factory=frozenset, description="Normalized hint names, declared and parsed.")
    join_keys: Tuple[JoinCondition, ...] = Field(default_factory=tuple)
    module: str
    pattern_version: Optional[str] = Field(default=None, description="None for the generated projection.")
    exposes: Tuple[str, ...] = Field(default_factory=tuple)
    depends_on: Tuple[str, ...] = Field(default_factory=tuple)
    reference_count: int = 0
    multi_reference: bool = False
    requires_materialization: bool = False
    estimated_rows: Optional[int] = None

    @property
    def pattern_key(self) -> Optional[str]:
        if self.pattern_version is None:
            return None
        return f"{self.name} v{self.pattern_version}"

    def render(self) -> List[str]:
        lines = [f"-- {line}" for line in self.description.strip().splitlines() if line.strip()]
        lines.append(self.body.strip("\n"))
        return lines


class ComposedArtifact(BaseModel):
    """A draft SQL document. Bindings travel beside the text, never inside it."""

    model_config = ConfigDict(frozen=True)

    report_type: str
    modules: Tuple[str, ...]
    header: Tuple[str, ...] = Field(default_factory=tuple)
    blocks: Tuple[Block, ...]
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @property
    def cte_blocks(self) -> Tuple[Block, ...]:
        return tuple(b for b in self.blocks if b.stage != Stage.FINAL)

    @property
    def final_block(self) -> Optional[Block]:
        finals = [b for b in self.blocks if b.stage == Stage.FINAL]
        return finals[-1] if finals else None

    def block(self, name: str) -> Optional[Block]:
        for b in self.blocks:
            if b.name == name:
                return b
        return None

    def render(self) -> str:
        """Renders the artifact as one SQL document.

        Header comments first, then every non-final block as a CTE in block
        order, then the final projection.
        """
        lines = [f"-- {line}" for line in self.header]

        ctes = [b for b in self.blocks if b.stage != Stage.FINAL]
        if ctes:
            lines.append("WITH")
            for i, block in enumerate(ctes):
                lines.append(f"{block.name} AS (")
                lines.extend(block.render())
                lines.append(")," if i < len(ctes) - 1 else ")")

        for block in self.blocks:
            if block.stage == Stage.FINAL:
                lines.extend(block.render())

        return "\n".join(lines) + "\n"
