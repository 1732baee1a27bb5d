from .node import AuthorizationGate, AuthorizerNode, CollaboratorUnavailable
from .schemas import AuthorizationDecision, DenyReason

__all__ = [
    "AuthorizationGate",
    "AuthorizerNode",
    "CollaboratorUnavailable",
    "AuthorizationDecision",
    "DenyReason",
]
