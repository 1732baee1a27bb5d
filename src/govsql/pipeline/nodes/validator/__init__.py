from .node import ConstraintValidator, ValidatorNode
from .rules import RULES, ValidationPolicy
from .schemas import ConstraintViolation, RuleId

__all__ = [
    "ConstraintValidator",
    "ValidatorNode",
    "RULES",
    "ValidationPolicy",
    "ConstraintViolation",
    "RuleId",
]
