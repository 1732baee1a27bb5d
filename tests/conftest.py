import pathlib
from datetime import date
from unittest.mock import MagicMock

import pytest

from govsql.common.contracts import ReportRequest
from govsql.common.resilience import AUTH_BREAKER
from govsql.patterns import PatternStore, RepositoryPattern, ReportTemplate

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
SAMPLE_PATTERNS = PROJECT_ROOT / "configs" / "patterns"
SAMPLE_POLICIES = PROJECT_ROOT / "configs" / "policies.json"
SAMPLE_REQUESTS = PROJECT_ROOT / "configs" / "requests"


def _ar_patterns():
    return [
        RepositoryPattern(
            name="PERIOD_BOUNDS",
            stage="period",
            modules=["AR", "AP"],
            exposes=["PERIOD_START", "PERIOD_END"],
            body="SELECT TRUNC(:AS_OF_DATE, 'MM') AS PERIOD_START, LAST_DAY(:AS_OF_DATE) AS PERIOD_END FROM DUAL",
        ),
        RepositoryPattern(
            name="AR_TRX_MASTER",
            version="2",
            stage="repository",
            modules=["AR"],
            description="Receivable transactions for one operating unit.",
            exposes=["CUSTOMER_TRX_ID", "ORG_ID", "AMOUNT_DUE"],
            body=(
                "SELECT /*+ MATERIALIZE */ CT.CUSTOMER_TRX_ID, CT.ORG_ID, CT.AMOUNT_DUE\n"
                "FROM RA_CUSTOMER_TRX_ALL CT\n"
                "WHERE CT.ORG_ID = :ORG_ID"
            ),
        ),
        RepositoryPattern(
            name="AR_RECEIPTS",
            stage="repository",
            modules=["AR"],
            exposes=["CUSTOMER_TRX_ID", "ORG_ID", "AMOUNT_APPLIED"],
            body=(
                "SELECT RA.CUSTOMER_TRX_ID, RA.ORG_ID, RA.AMOUNT_APPLIED\n"
                "FROM AR_RECEIVABLE_APPLICATIONS_ALL RA\n"
                "WHERE RA.ORG_ID = :ORG_ID"
            ),
        ),
        RepositoryPattern(
            name="AR_OPEN_ITEMS",
            stage="calculation",
            modules=["AR"],
            depends_on=["AR_TRX_MASTER", "AR_RECEIPTS"],
            exposes=["CUSTOMER_TRX_ID", "ORG_ID", "OPEN_AMOUNT"],
            joins=[
                {
                    "left": "AR_TRX_MASTER",
                    "right": "AR_RECEIPTS",
                    "predicates": ["T.CUSTOMER_TRX_ID = R.CUSTOMER_TRX_ID(+)", "T.ORG_ID = R.ORG_ID(+)"],
                }
            ],
            body=(
                "SELECT T.CUSTOMER_TRX_ID, T.ORG_ID, T.AMOUNT_DUE - NVL(R.AMOUNT_APPLIED, 0) AS OPEN_AMOUNT\n"
                "FROM AR_TRX_MASTER T, AR_RECEIPTS R\n"
                "WHERE T.CUSTOMER_TRX_ID = R.CUSTOMER_TRX_ID(+)\n"
                "  AND T.ORG_ID = R.ORG_ID(+)"
            ),
        ),
        RepositoryPattern(
            name="AR_OPEN_SUMMARY",
            stage="aggregation",
            modules=["AR"],
            depends_on=["AR_OPEN_ITEMS"],
            exposes=["ORG_ID", "OPEN_AMOUNT"],
            body="SELECT O.ORG_ID, SUM(O.OPEN_AMOUNT) AS OPEN_AMOUNT\nFROM AR_OPEN_ITEMS O\nGROUP BY O.ORG_ID",
        ),
    ]


def _templates():
    return [
        ReportTemplate(
            name="AR_OPEN",
            modules=["AR"],
            entities=["AR_TRX_MASTER", "AR_RECEIPTS"],
            calculations=["AR_OPEN_ITEMS"],
            aggregations=["AR_OPEN_SUMMARY"],
            projection={"columns": ["ORG_ID", "OPEN_AMOUNT"]},
        ),
        ReportTemplate(
            name="AP_LIABILITY",
            modules=["AP"],
            entities=["AP_INV_MASTER"],
            projection={"columns": ["INVOICE_ID"]},
        ),
    ]


@pytest.fixture
def patterns():
    return _ar_patterns()


@pytest.fixture
def templates():
    return _templates()


@pytest.fixture
def store(patterns, templates):
    """A small AR library with one AP template whose fragments are absent."""
    return PatternStore(patterns=patterns, templates=templates)


@pytest.fixture
def ar_request():
    return ReportRequest(
        report_type="AR_OPEN",
        modules=["AR"],
        parameters={"AS_OF_DATE": date(2026, 9, 30), "ORG_ID": 204},
    )


@pytest.fixture
def audit():
    return MagicMock()


@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch, tmp_path):
    AUTH_BREAKER.close()
    monkeypatch.setattr("govsql.common.settings.settings.audit_log_path", str(tmp_path / "audit.log"))
    yield
    AUTH_BREAKER.close()
