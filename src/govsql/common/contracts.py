from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from govsql.patterns.models import normalize_module


class EntityRef(BaseModel):
    """An entity the report needs, optionally pinned to a module.

    Accepts ``"AR_TRX_MASTER"``, ``"AR.AR_TRX_MASTER"`` or a mapping.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    module: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            if "." in data:
                module, _, name = data.partition(".")
                return {"name": name, "module": module}
            return {"name": data}
        return data

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Entity name must not be empty.")
        return v

    @field_validator("module")
    @classmethod
    def _module(cls, v: Optional[str]) -> Optional[str]:
        return normalize_module(v) if v and v.strip() else None

    def __str__(self) -> str:
        return f"{self.module}.{self.name}" if self.module else self.name


class BindingMap(dict):
    """Bind values of a request. Reads like a dict; any mutation raises TypeError."""

    def _read_only(self, *args: Any, **kwargs: Any) -> None:
        raise TypeError("Request parameters are read-only; build a new ReportRequest instead.")

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only

    def __reduce__(self):
        return (BindingMap, (dict(self),))


class ReportRequest(BaseModel):
    """A structured report request. Built once per invocation and never mutated."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    report_type: str = Field(..., description="Report template name, e.g. 'AR_AGING'.")
    entities: Tuple[EntityRef, ...] = Field(default_factory=tuple, description="Ordered entities needed by the report.")
    modules: FrozenSet[str] = Field(..., description="Modules the request references.")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Bind variable values, keyed by name.")
    cross_module: bool = Field(default=False, description="Set when the request deliberately spans modules.")

    @field_validator("report_type")
    @classmethod
    def _report_type(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("report_type must not be empty.")
        return v

    @field_validator("modules", mode="before")
    @classmethod
    def _modules(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [m for m in v.split(",")]
        if isinstance(v, Iterable):
            return frozenset(normalize_module(m) for m in v if str(m).strip())
        return v

    @field_validator("modules")
    @classmethod
    def _modules_not_empty(cls, v: FrozenSet[str]) -> FrozenSet[str]:
        if not v:
            raise ValueError("A request must reference at least one module.")
        return v

    @field_validator("entities", mode="after")
    @classmethod
    def _dedupe(cls, v: Tuple[EntityRef, ...]) -> Tuple[EntityRef, ...]:
        seen = set()
        ordered: List[EntityRef] = []
        for ref in v:
            if ref in seen:
                continue
            seen.add(ref)
            ordered.append(ref)
        return tuple(ordered)

    @field_validator("parameters", mode="before")
    @classmethod
    def _parameters(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k).strip().lstrip(":").upper(): val for k, val in v.items()}
        return v

    @field_validator("parameters", mode="after")
    @classmethod
    def _freeze_parameters(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return BindingMap(v)

    @model_validator(mode="after")
    def _cross_module_flag(self) -> "ReportRequest":
        if len(self.referenced_modules) > 1 and not self.cross_module:
            raise ValueError(
                "Request references more than one module but is not flagged cross_module."
            )
        return self

    @property
    def referenced_modules(self) -> FrozenSet[str]:
        """Every module the request touches. This is what must be authorized."""
        return self.modules | frozenset(e.module for e in self.entities if e.module)

    def date_parameter_names(self, suffixes: Iterable[str] = ()) -> List[str]:
        suffixes = tuple(s.upper() for s in suffixes)
        names = []
        for name, value in self.parameters.items():
            if isinstance(value, (date, datetime)) or (suffixes and name.endswith(suffixes)):
                names.append(name)
        return names

    def has_date_parameters(self, suffixes: Iterable[str] = ()) -> bool:
        return bool(self.date_parameter_names(suffixes))
