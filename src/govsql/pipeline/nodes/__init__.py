from .authorizer.node import AuthorizerNode
from .composer.node import ComposerNode
from .validator.node import ValidatorNode


__all__ = [
    "AuthorizerNode",
    "ComposerNode",
    "ValidatorNode",
]
