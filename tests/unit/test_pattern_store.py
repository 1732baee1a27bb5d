import pytest

from govsql.common.errors import PatternLoadError
from govsql.configs import ConfigManager
from govsql.patterns import PatternStore, RepositoryPattern, ReportTemplate, Stage

from conftest import SAMPLE_PATTERNS


def _pattern(name="AR_TRX_MASTER", version="1", modules=("AR",), stage="repository"):
    return RepositoryPattern(name=name, version=version, stage=stage, modules=list(modules), body="SELECT 1 FROM DUAL")


def test_lookup_returns_fragment_for_exact_pair(store):
    # Validates keyed lookup because composition reads fragments by (entity, module) only.
    pattern = store.lookup("ar_trx_master", "ar")

    assert pattern is not None
    assert pattern.key == "AR_TRX_MASTER v2"
    assert ("AR_TRX_MASTER", "AR") in store


def test_lookup_miss_is_none_not_error(store):
    # Validates a miss is a normal outcome because the composer turns it into a clarification.
    assert store.lookup("AR_TRX_MASTER", "AP") is None
    assert store.lookup("AP_INV_MASTER", "AP") is None
    assert ("AP_INV_MASTER", "AP") not in store


def test_shared_fragment_is_indexed_under_each_module(store):
    # Validates multi-module tags because one period fragment serves every tagged module.
    assert store.lookup("PERIOD_BOUNDS", "AR") is store.lookup("PERIOD_BOUNDS", "AP")
    assert store.modules() == {"AR", "AP"}
    assert store.entities_for("AP") == ("PERIOD_BOUNDS",)


def test_duplicate_key_fails_load():
    # Validates load-time rejection because two fragments may not compete for one key.
    with pytest.raises(PatternLoadError, match="Duplicate pattern"):
        PatternStore(patterns=[_pattern(version="1"), _pattern(version="2")])


def test_same_entity_in_different_modules_is_allowed():
    store = PatternStore(patterns=[_pattern(modules=("AR",)), _pattern(modules=("AP",), version="3")])

    assert store.lookup("AR_TRX_MASTER", "AP").version == "3"
    assert store.lookup("AR_TRX_MASTER", "AR").version == "1"


def test_duplicate_template_fails_load():
    templates = [ReportTemplate(name="AR_OPEN"), ReportTemplate(name="AR_OPEN")]

    with pytest.raises(PatternLoadError, match="Duplicate report template"):
        PatternStore(templates=templates)


def test_pattern_requires_module_tags():
    # Validates the module tag set because an untagged fragment could be used by anyone.
    with pytest.raises(ValueError):
        RepositoryPattern(name="X", stage="repository", modules=[], body="SELECT 1 FROM DUAL")


def test_pattern_rejects_non_identifier_names():
    with pytest.raises(ValueError):
        RepositoryPattern(name="AR TRX; DROP", stage="repository", modules=["AR"], body="SELECT 1 FROM DUAL")


def test_requires_materialization_from_reuse_or_complexity():
    reused = RepositoryPattern(name="A", stage="repository", modules=["AR"], body="SELECT 1 FROM DUAL", reuse_count=2)
    complex_ = RepositoryPattern(name="B", stage="repository", modules=["AR"], body="SELECT 1 FROM DUAL", complex=True)
    plain = _pattern()

    assert reused.requires_materialization
    assert complex_.requires_materialization
    assert not plain.requires_materialization


def test_stage_rank_follows_declaration_order():
    assert [s.rank for s in Stage] == [0, 1, 2, 3, 4]
    assert Stage.PERIOD.rank < Stage.FINAL.rank


def test_loader_applies_file_level_module_default(tmp_path):
    # Validates the file-level module because most library files hold one module.
    (tmp_path / "gl.yaml").write_text(
        "module: gl\n"
        "patterns:\n"
        "  - name: GL_BALANCES\n"
        "    stage: repository\n"
        "    body: SELECT B.LEDGER_ID FROM GL_BALANCES B\n"
        "  - name: GL_SHARED\n"
        "    stage: repository\n"
        "    modules: [GL, AP]\n"
        "    body: SELECT 1 FROM DUAL\n",
        encoding="utf-8",
    )

    store = ConfigManager().load_pattern_library(tmp_path)

    assert store.lookup("GL_BALANCES", "GL") is not None
    assert store.lookup("GL_SHARED", "AP") is not None
    assert store.lookup("GL_BALANCES", "AP") is None


def test_loader_rejects_malformed_yaml(tmp_path):
    (tmp_path / "bad.yaml").write_text("patterns: [\n  - name: X\n", encoding="utf-8")

    with pytest.raises(PatternLoadError, match="Failed to parse YAML"):
        ConfigManager().load_pattern_library(tmp_path)


def test_loader_rejects_invalid_pattern(tmp_path):
    # Validates schema errors abort the load because a partial library is never served.
    (tmp_path / "ar.yaml").write_text(
        "module: AR\npatterns:\n  - name: AR_TRX_MASTER\n    body: SELECT 1 FROM DUAL\n",
        encoding="utf-8",
    )

    with pytest.raises(PatternLoadError, match="ar.yaml invalid"):
        ConfigManager().load_pattern_library(tmp_path)


def test_loader_rejects_missing_library(tmp_path):
    with pytest.raises(PatternLoadError, match="not found"):
        ConfigManager().load_pattern_library(tmp_path / "absent")


def test_sample_library_loads():
    store = ConfigManager().load_pattern_library(SAMPLE_PATTERNS)

    assert {"AR", "AP", "FA"} <= store.modules()
    assert {t.name for t in store.templates()} >= {"AR_AGING", "AP_SUPPLIER_BALANCE", "FA_ASSET_REGISTER"}
