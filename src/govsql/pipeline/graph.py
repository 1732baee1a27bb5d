from langgraph.graph import END, StateGraph

from govsql.pipeline.nodes.authorizer import AuthorizationGate, AuthorizerNode
from govsql.pipeline.nodes.composer import ComposerNode, TemplateComposer
from govsql.pipeline.nodes.validator import ConstraintValidator, ValidatorNode
from govsql.pipeline.state import EngineState


def build_graph(
    gate: AuthorizationGate,
    composer: TemplateComposer,
    validator: ConstraintValidator,
):
    """Builds the request graph.

    authorizer -> composer -> validator, with an early exit after each step.
    There are no loops: every request reaches END in one pass.

    Args:
        gate (AuthorizationGate): Module authorization.
        composer (TemplateComposer): Draft assembly from the pattern store.
        validator (ConstraintValidator): Artifact rules.

    Returns:
        The compiled LangGraph runnable.
    """
    graph = StateGraph(EngineState)

    graph.add_node("authorizer", AuthorizerNode(gate))
    graph.add_node("composer", ComposerNode(composer))
    graph.add_node("validator", ValidatorNode(validator))

    graph.set_entry_point("authorizer")

    def _authorizer_route(state: EngineState):
        if state.errors or state.decision is None or not state.decision.allowed:
            return "end"
        return "continue"

    def _composer_route(state: EngineState):
        if state.errors or state.missing is not None or state.draft is None:
            return "end"
        return "continue"

    graph.add_conditional_edges(
        "authorizer",
        _authorizer_route,
        {"continue": "composer", "end": END},
    )
    graph.add_conditional_edges(
        "composer",
        _composer_route,
        {"continue": "validator", "end": END},
    )
    graph.add_edge("validator", END)

    return graph.compile()
