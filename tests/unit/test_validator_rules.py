import pytest

from govsql.common.errors import ErrorCode
from govsql.common.settings import Settings
from govsql.patterns import JoinCondition, Stage
from govsql.pipeline.nodes.composer import TemplateComposer
from govsql.pipeline.nodes.validator import ConstraintValidator, RuleId, ValidationPolicy, ValidatorNode
from govsql.pipeline.nodes.validator.rules import (
    check_dialect,
    check_forbidden_token,
    check_hints,
    check_projection_purity,
    check_stage_sequence,
    check_tenant_scope,
    tenant_predicate,
)
from govsql.pipeline.state import EngineState

POLICY = ValidationPolicy()


@pytest.fixture
def artifact(store, ar_request):
    return TemplateComposer(store).compose(ar_request)


def _with_block(artifact, name, **update):
    blocks = tuple(b.model_copy(update=update) if b.name == name else b for b in artifact.blocks)
    return artifact.model_copy(update={"blocks": blocks})


def _rules(violations):
    return [v.rule for v in violations]


def test_composed_sample_is_clean(artifact):
    # Validates the baseline because every negative test below changes exactly one thing.
    assert ConstraintValidator(POLICY).validate(artifact) == []


def test_ansi_join_is_rejected(artifact):
    bad = _with_block(
        artifact,
        "AR_OPEN_ITEMS",
        body="SELECT T.ORG_ID FROM AR_TRX_MASTER T LEFT OUTER JOIN AR_RECEIPTS R ON T.ORG_ID = R.ORG_ID",
    )

    violations = check_dialect(bad, POLICY)

    assert _rules(violations) == [RuleId.DIALECT]
    assert violations[0].block == "AR_OPEN_ITEMS"


def test_join_keyword_inside_literal_or_hint_is_allowed(artifact):
    # Validates tokenizing because the rule must not trip on text that only looks like a join.
    ok = _with_block(
        artifact,
        "AR_RECEIPTS",
        body="SELECT /*+ USE_HASH(t r) */ 'LEFT JOIN' AS LABEL, R.JOIN_DATE FROM AR_RECEIPTS_ALL R",
    )

    assert check_dialect(ok, POLICY) == []


def test_using_clause_is_rejected(artifact):
    bad = _with_block(artifact, "AR_OPEN_ITEMS", body="SELECT * FROM AR_TRX_MASTER T JOIN AR_RECEIPTS R USING (ORG_ID)")

    assert "USING" in check_dialect(bad, POLICY)[0].message


def test_multi_reference_block_needs_hint(artifact):
    bad = _with_block(artifact, "AR_RECEIPTS", multi_reference=True, reference_count=2)

    violations = check_hints(bad, POLICY)

    assert _rules(violations) == [RuleId.HINT_PRESENCE]
    assert violations[0].block == "AR_RECEIPTS"


def test_multi_reference_aggregation_is_not_checked(artifact):
    ok = _with_block(artifact, "AR_OPEN_SUMMARY", multi_reference=True, reference_count=2)

    assert check_hints(ok, POLICY) == []


def test_materialization_and_parallel_requirements(artifact):
    # Validates the sizing hints because reused and very large extractions are tuned explicitly.
    bad = _with_block(artifact, "AR_RECEIPTS", requires_materialization=True, estimated_rows=50_000_000)
    ok = _with_block(
        artifact,
        "AR_RECEIPTS",
        requires_materialization=True,
        estimated_rows=50_000_000,
        hints=frozenset({"MATERIALIZE", "PARALLEL"}),
    )

    messages = [v.message for v in check_hints(bad, POLICY)]

    assert len(messages) == 2
    assert any("MATERIALIZE" in m for m in messages)
    assert any("PARALLEL" in m for m in messages)
    assert check_hints(ok, POLICY) == []


def test_forbidden_token_anywhere(artifact):
    in_body = _with_block(artifact, "AR_RECEIPTS", body="SELECT R.ORG_ID FROM AR_RECEIPTS_ALL R WHERE R.ORG_ID = &ORG")
    in_comment = _with_block(artifact, "AR_RECEIPTS", description="Receipts & applications")
    in_header = artifact.model_copy(update={"header": artifact.header + ("Owner: AR & AP",)})

    assert _rules(check_forbidden_token(in_body, POLICY)) == [RuleId.FORBIDDEN_TOKEN]
    assert _rules(check_forbidden_token(in_comment, POLICY)) == [RuleId.FORBIDDEN_TOKEN]
    assert check_forbidden_token(in_header, POLICY)[0].block is None
    assert check_forbidden_token(in_body, ValidationPolicy(forbidden_token="@")) == []


@pytest.mark.parametrize("token", ["@", "#", "%"])
def test_generated_header_passes_other_forbidden_symbols(artifact, token):
    # Validates the header format because text the engine writes itself must not trip a configured token.
    policy = ValidationPolicy(forbidden_token=token)

    assert check_forbidden_token(artifact, policy) == []


@pytest.mark.parametrize(
    "predicate, expected",
    [
        ("T.ORG_ID = R.ORG_ID(+)", ("ORG_ID", "ORG_ID")),
        ("a.set_of_books_id(+) = b.set_of_books_id", ("SET_OF_BOOKS_ID", "SET_OF_BOOKS_ID")),
        ("T.ORG_ID = 204", None),
        ("T.ORG_ID = R.CUSTOMER_ID", None),
        ("T.CUSTOMER_TRX_ID = R.CUSTOMER_TRX_ID(+)", None),
    ],
)
def test_tenant_predicate(predicate, expected):
    assert tenant_predicate(predicate, POLICY.tenant_columns) == expected


def test_tenant_predicate_must_be_in_block_text(artifact):
    # Validates the text check because a declared predicate that the body drops scopes nothing.
    body = artifact.block("AR_OPEN_ITEMS").body.replace("\n  AND T.ORG_ID = R.ORG_ID(+)", "")
    bad = _with_block(artifact, "AR_OPEN_ITEMS", body=body)

    violations = check_tenant_scope(bad, POLICY)

    assert set(_rules(violations)) == {RuleId.TENANT_SCOPE}
    assert "missing from the block text" in violations[0].message


def test_join_without_tenant_equality(artifact):
    joins = (
        JoinCondition(
            left="AR_TRX_MASTER",
            right="AR_RECEIPTS",
            predicates=("T.CUSTOMER_TRX_ID = R.CUSTOMER_TRX_ID(+)",),
        ),
    )
    bad = _with_block(artifact, "AR_OPEN_ITEMS", join_keys=joins)

    assert "no tenant-scoping equality" in check_tenant_scope(bad, POLICY)[0].message


def test_join_to_calculated_block_is_not_tenant_checked(artifact):
    joins = (JoinCondition(left="AR_OPEN_ITEMS", right="AR_RECEIPTS", predicates=()),)
    ok = _with_block(artifact, "AR_OPEN_SUMMARY", join_keys=joins)

    assert check_tenant_scope(ok, POLICY) == []


def test_undeclared_join_between_extractions_needs_tenant_equality(artifact):
    # Validates body parsing because a join the author never declared still mixes tenants.
    body = (
        "SELECT T.CUSTOMER_TRX_ID, T.ORG_ID, T.AMOUNT_DUE - NVL(R.AMOUNT_APPLIED, 0) AS OPEN_AMOUNT\n"
        "FROM AR_TRX_MASTER T, AR_RECEIPTS R\n"
        "WHERE T.CUSTOMER_TRX_ID = R.CUSTOMER_TRX_ID(+)"
    )
    bad = _with_block(artifact, "AR_OPEN_ITEMS", body=body, join_keys=())

    violations = check_tenant_scope(bad, POLICY)

    assert _rules(violations) == [RuleId.TENANT_SCOPE]
    assert violations[0].block == "AR_OPEN_ITEMS"
    assert "AR_RECEIPTS R and AR_TRX_MASTER T" in violations[0].message


def test_undeclared_join_with_tenant_equality_passes(artifact):
    ok = _with_block(artifact, "AR_OPEN_ITEMS", join_keys=())

    assert check_tenant_scope(ok, POLICY) == []


def test_union_of_extractions_is_not_a_join(artifact):
    body = "SELECT T.ORG_ID FROM AR_TRX_MASTER T\nUNION ALL\nSELECT R.ORG_ID FROM AR_RECEIPTS R"
    ok = _with_block(artifact, "AR_OPEN_ITEMS", body=body, join_keys=())

    assert check_tenant_scope(ok, POLICY) == []


def test_default_policy_matches_settings_defaults():
    # Validates the two hint lists agree because a policy built in code must judge blocks as settings would.
    from_settings = ValidationPolicy.from_settings(Settings())

    assert ValidationPolicy().optimizer_hints == from_settings.optimizer_hints


def test_stage_order_violation(artifact):
    blocks = list(artifact.blocks)
    blocks[1], blocks[3] = blocks[3], blocks[1]
    bad = artifact.model_copy(update={"blocks": tuple(blocks)})

    violations = check_stage_sequence(bad, POLICY)

    assert violations
    assert set(_rules(violations)) == {RuleId.STAGE_SEQUENCE}


def test_duplicate_block_name(artifact):
    blocks = artifact.blocks[:2] + artifact.blocks[1:]
    bad = artifact.model_copy(update={"blocks": blocks})

    assert any("more than once" in v.message for v in check_stage_sequence(bad, POLICY))


def test_exactly_one_final_block_and_it_is_last(artifact):
    no_final = artifact.model_copy(update={"blocks": artifact.blocks[:-1]})
    final_first = artifact.model_copy(update={"blocks": (artifact.blocks[-1],) + artifact.blocks[:-1]})

    assert any("exactly one final block" in v.message for v in check_stage_sequence(no_final, POLICY))
    assert check_stage_sequence(final_first, POLICY)


def test_dependency_defined_later_is_a_violation(artifact):
    bad = _with_block(artifact, "AR_TRX_MASTER", depends_on=("AR_OPEN_SUMMARY",))

    assert any("not defined earlier" in v.message for v in check_stage_sequence(bad, POLICY))


@pytest.mark.parametrize(
    "body",
    [
        "SELECT ORG_ID, OPEN_AMOUNT * 2 AS DOUBLED FROM AR_OPEN_SUMMARY",
        "SELECT ORG_ID FROM AR_OPEN_SUMMARY WHERE ORG_ID = 204",
        "SELECT UPPER(ORG_ID) AS ORG FROM AR_OPEN_SUMMARY",
        "SELECT ORG_ID, SUM(OPEN_AMOUNT) AS T FROM AR_OPEN_SUMMARY GROUP BY ORG_ID",
        "SELECT A.ORG_ID FROM AR_OPEN_SUMMARY A, AR_OPEN_ITEMS B",
        "SELECT CASE WHEN OPEN_AMOUNT > 0 THEN 1 END AS F FROM AR_OPEN_SUMMARY",
        "SELECT ORG_ID FROM AR_OPEN_SUMMARY UNION SELECT ORG_ID FROM AR_OPEN_ITEMS",
    ],
)
def test_final_block_must_be_pure(artifact, body):
    # Validates projection purity because business logic belongs in the staged CTEs.
    bad = _with_block(artifact, "AR_OPEN_PROJECTION", body=body)

    assert _rules(check_projection_purity(bad, POLICY)) == [RuleId.PROJECTION_PURITY]


def test_plain_projection_with_alias_and_order_is_pure(artifact):
    ok = _with_block(
        artifact,
        "AR_OPEN_PROJECTION",
        body="SELECT ORG_ID AS ORG, OPEN_AMOUNT\nFROM AR_OPEN_SUMMARY\nORDER BY ORG_ID",
    )

    assert check_projection_purity(ok, POLICY) == []


def test_validator_collects_every_violation(artifact):
    bad = _with_block(artifact, "AR_RECEIPTS", description="A & B", multi_reference=True)

    rules = _rules(ConstraintValidator(POLICY).validate(bad))

    assert rules == [RuleId.HINT_PRESENCE, RuleId.FORBIDDEN_TOKEN]


def test_policy_from_settings_normalizes_hints(monkeypatch):
    monkeypatch.setattr("govsql.common.settings.settings.optimizer_hints", ["parallel(4)", "Materialize"])

    policy = ValidationPolicy.from_settings()

    assert policy.optimizer_hints == frozenset({"PARALLEL", "MATERIALIZE"})
    assert "ORG_ID" in policy.tenant_columns


def test_validator_node_requires_draft(ar_request):
    result = ValidatorNode(ConstraintValidator(POLICY))(EngineState(trace_id="t", request=ar_request))

    assert result["errors"][0].error_code == ErrorCode.INVALID_STATE


def test_validator_node_marks_validated(artifact, ar_request):
    state = EngineState(trace_id="t", request=ar_request, draft=artifact)

    result = ValidatorNode(ConstraintValidator(POLICY))(state)

    assert result["validated"] is True
    assert result["violations"] == []
    assert artifact.final_block.stage == Stage.FINAL
