from __future__ import annotations

import re
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]*$")


class Stage(str, Enum):
    """Composition stages. Declaration order is the mandatory block order."""

    PERIOD = "period"
    REPOSITORY = "repository"
    CALCULATION = "calculation"
    AGGREGATION = "aggregation"
    FINAL = "final"

    @property
    def rank(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER: Tuple[Stage, ...] = tuple(Stage)


def normalize_module(value: str) -> str:
    return str(value).strip().upper()


def _check_identifier(value: str, label: str) -> str:
    value = value.strip()
    if not _IDENTIFIER.match(value):
        raise ValueError(f"Invalid {label} '{value}'. Must be a plain SQL identifier.")
    return value.upper()


class JoinCondition(BaseModel):
    """A join between two entities as declared by the fragment author."""

    model_config = ConfigDict(frozen=True)

    left: str
    right: str
    predicates: Tuple[str, ...] = Field(default_factory=tuple, description="Equality predicates, e.g. 'T.ORG_ID = R.ORG_ID(+)'.")

    @field_validator("left", "right")
    @classmethod
    def _entity_names(cls, v: str) -> str:
        return _check_identifier(v, "join entity")


class RepositoryPattern(BaseModel):
    """A named, versioned, pre-approved fragment for one composition stage."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., description="Entity name. Also the CTE name the fragment is rendered under.")
    version: str = Field(default="1")
    stage: Stage
    modules: FrozenSet[str] = Field(..., description="Modules this fragment is valid for.")
    body: str = Field(..., min_length=1, description="Fragment text, copied verbatim into the artifact.")
    description: str = Field(default="", description="Inline documentation shipped with the fragment.")
    hints: FrozenSet[str] = Field(default_factory=frozenset)
    exposes: Tuple[str, ...] = Field(default_factory=tuple, description="Columns later stages may reference.")
    depends_on: Tuple[str, ...] = Field(default_factory=tuple, description="Upstream entities the body reads from.")
    joins: Tuple[JoinCondition, ...] = Field(default_factory=tuple)
    reuse_count: int = Field(default=1, ge=1)
    complex: bool = False
    multi_reference: bool = False
    estimated_rows: Optional[int] = Field(default=None, ge=0)

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _check_identifier(v, "pattern name")

    @field_validator("modules", mode="before")
    @classmethod
    def _modules(cls, v):
        if isinstance(v, str):
            v = [v]
        return frozenset(normalize_module(m) for m in (v or []) if str(m).strip())

    @field_validator("modules")
    @classmethod
    def _modules_not_empty(cls, v: FrozenSet[str]) -> FrozenSet[str]:
        if not v:
            raise ValueError("Pattern must declare a non-empty module tag set.")
        return v

    @field_validator("hints", mode="before")
    @classmethod
    def _hints(cls, v):
        if isinstance(v, str):
            v = [v]
        return frozenset(str(h).strip().upper() for h in (v or []) if str(h).strip())

    @field_validator("exposes", "depends_on", mode="before")
    @classmethod
    def _upper_names(cls, v):
        if isinstance(v, str):
            v = [v]
        return tuple(str(c).strip().upper() for c in (v or []) if str(c).strip())

    @property
    def requires_materialization(self) -> bool:
        return self.reuse_count >= 2 or self.complex

    @property
    def key(self) -> str:
        return f"{self.name} v{self.version}"


class TemplateEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity: str
    module: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data):
        if isinstance(data, str):
            return {"entity": data}
        return data

    @field_validator("entity")
    @classmethod
    def _entity(cls, v: str) -> str:
        return _check_identifier(v, "template entity")

    @field_validator("module")
    @classmethod
    def _module(cls, v: Optional[str]) -> Optional[str]:
        return normalize_module(v) if v else None


class ProjectionSpec(BaseModel):
    """How the final stage is materialized.

    Either a named final-stage pattern (``entity``) or a generated projection
    over ``columns`` of ``source``. Neither may carry business logic.
    """

    model_config = ConfigDict(frozen=True)

    entity: Optional[TemplateEntry] = None
    source: Optional[str] = None
    columns: Tuple[str, ...] = Field(default_factory=tuple)
    order_by: Tuple[str, ...] = Field(default_factory=tuple)

    @field_validator("source")
    @classmethod
    def _source(cls, v: Optional[str]) -> Optional[str]:
        return _check_identifier(v, "projection source") if v else None

    @field_validator("columns", "order_by", mode="before")
    @classmethod
    def _columns(cls, v):
        if isinstance(v, str):
            v = [v]
        return tuple(_check_identifier(str(c), "projection column") for c in (v or []))


class ReportTemplate(BaseModel):
    """Names the entities and stages a report type requires."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    description: str = ""
    modules: FrozenSet[str] = Field(default_factory=frozenset)
    period: Optional[str] = None
    entities: Tuple[TemplateEntry, ...] = Field(default_factory=tuple)
    calculations: Tuple[TemplateEntry, ...] = Field(default_factory=tuple)
    aggregations: Tuple[TemplateEntry, ...] = Field(default_factory=tuple)
    projection: ProjectionSpec = Field(default_factory=ProjectionSpec)

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _check_identifier(v, "report type")

    @field_validator("period")
    @classmethod
    def _period(cls, v: Optional[str]) -> Optional[str]:
        return _check_identifier(v, "period entity") if v else None

    @field_validator("modules", mode="before")
    @classmethod
    def _modules(cls, v):
        if isinstance(v, str):
            v = [v]
        return frozenset(normalize_module(m) for m in (v or []) if str(m).strip())

    def supports(self, module: str) -> bool:
        return not self.modules or module in self.modules


class PatternFileConfig(BaseModel):
    """File-level schema for one YAML file of the pattern library."""

    version: int = Field(1, description="Schema version")
    module: Optional[str] = Field(default=None, description="Default module tag for patterns in this file.")
    patterns: List[dict] = Field(default_factory=list)
    templates: List[ReportTemplate] = Field(default_factory=list)

    def build_patterns(self) -> List[RepositoryPattern]:
        """Materializes patterns, applying the file-level module default."""
        built = []
        for raw in self.patterns:
            data = dict(raw)
            if not data.get("modules") and self.module:
                data["modules"] = [self.module]
            built.append(RepositoryPattern.model_validate(data))
        return built
