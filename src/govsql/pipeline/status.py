from enum import Enum


class EngineStatus(str, Enum):
    """Engine lifecycle. Every request ends in DONE after a single pass."""

    START = "start"
    AUTHORIZING = "authorizing"
    COMPOSING = "composing"
    VALIDATING = "validating"
    DONE = "done"
