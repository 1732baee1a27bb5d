from .node import ComposerNode, TemplateComposer, bind_variables, normalize_hint, parse_hints, pattern_block
from .schemas import Block, ComposedArtifact, MissingItem, MissingKind

__all__ = [
    "ComposerNode",
    "TemplateComposer",
    "bind_variables",
    "normalize_hint",
    "parse_hints",
    "pattern_block",
    "Block",
    "ComposedArtifact",
    "MissingItem",
    "MissingKind",
]
