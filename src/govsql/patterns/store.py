from __future__ import annotations

import logging
from collections import defaultdict
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from govsql.common.errors import PatternLoadError
from .models import RepositoryPattern, ReportTemplate, normalize_module

logger = logging.getLogger(__name__)

PatternKey = Tuple[str, str]


class PatternStore:
    """Read-only repository of composition fragments keyed by (entity, module).

    The store is fully built and validated in ``__init__`` and exposes only
    read operations afterwards, so a single instance can be shared by any
    number of concurrent requests.

    ``lookup`` returns ``None`` when no fragment exists for the exact pair.
    That is an expected outcome: callers must report the pattern as missing
    rather than construct a substitute.
    """

    def __init__(
        self,
        patterns: Iterable[RepositoryPattern] = (),
        templates: Iterable[ReportTemplate] = (),
    ):
        index: Dict[PatternKey, RepositoryPattern] = {}
        by_module: Dict[str, List[str]] = defaultdict(list)

        for pattern in patterns:
            if not isinstance(pattern, RepositoryPattern):
                raise PatternLoadError(f"Unsupported pattern record: {type(pattern).__name__}")
            if not pattern.modules:
                raise PatternLoadError(f"Pattern '{pattern.name}' declares no modules.")
            for module in sorted(pattern.modules):
                key = (pattern.name, module)
                existing = index.get(key)
                if existing is not None:
                    raise PatternLoadError(
                        f"Duplicate pattern for entity '{pattern.name}' in module '{module}' "
                        f"(versions {existing.version} and {pattern.version})."
                    )
                index[key] = pattern
                by_module[module].append(pattern.name)

        template_index: Dict[str, ReportTemplate] = {}
        for template in templates:
            if template.name in template_index:
                raise PatternLoadError(f"Duplicate report template '{template.name}'.")
            template_index[template.name] = template

        self._index: Mapping[PatternKey, RepositoryPattern] = MappingProxyType(index)
        self._templates: Mapping[str, ReportTemplate] = MappingProxyType(template_index)
        self._by_module: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {module: tuple(names) for module, names in by_module.items()}
        )

        logger.info(
            "Pattern store loaded: %d keys, %d templates, modules=%s",
            len(index),
            len(template_index),
            sorted(by_module),
        )

    def lookup(self, entity: str, module: str) -> Optional[RepositoryPattern]:
        """Returns the fragment for the exact (entity, module) pair, or None."""
        return self._index.get((entity.strip().upper(), normalize_module(module)))

    def template(self, report_type: str) -> Optional[ReportTemplate]:
        return self._templates.get(report_type.strip().upper())

    def modules(self) -> Set[str]:
        return set(self._by_module)

    def entities_for(self, module: str) -> Tuple[str, ...]:
        return self._by_module.get(normalize_module(module), ())

    def patterns(self) -> List[RepositoryPattern]:
        """Distinct patterns, ordered by name."""
        seen = {}
        for pattern in self._index.values():
            seen.setdefault(id(pattern), pattern)
        return sorted(seen.values(), key=lambda p: (p.name, sorted(p.modules)))

    def templates(self) -> List[ReportTemplate]:
        return sorted(self._templates.values(), key=lambda t: t.name)

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        entity, module = key
        return self.lookup(str(entity), str(module)) is not None
