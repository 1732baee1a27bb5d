import json
import logging

import pytest

from govsql.auth import StaticModuleProvider
from govsql.common.logger import JsonFormatter, RequestContextFilter, request_context
from govsql.pipeline.engine import Engine
from govsql.pipeline.nodes.validator import ValidationPolicy


class _Collector(logging.Handler):
    def __init__(self):
        super().__init__()
        self.addFilter(RequestContextFilter())
        self.setFormatter(JsonFormatter())
        self.lines = []

    def emit(self, record):
        self.lines.append(json.loads(self.format(record)))


@pytest.fixture
def collected():
    target = logging.getLogger("govsql")
    handler = _Collector()
    previous = target.level
    target.addHandler(handler)
    target.setLevel(logging.INFO)
    yield handler.lines
    target.removeHandler(handler)
    target.setLevel(previous)


def test_records_inside_request_context_carry_its_fields(collected):
    logger = logging.getLogger("govsql.test")

    with request_context("trace-7", "AR_AGING"):
        logger.info("inside", extra={"blocks": 4})
    logger.info("outside")

    inside, outside = collected
    assert (inside["trace_id"], inside["report_type"], inside["blocks"]) == ("trace-7", "AR_AGING", 4)
    assert "trace_id" not in outside and "report_type" not in outside


def test_worker_thread_records_are_tagged_with_the_request(collected, store, ar_request, audit):
    # Validates context propagation because composer logs run on the engine's worker thread.
    engine = Engine(store, StaticModuleProvider(["AR"]), policy=ValidationPolicy(), audit=audit, breaker=None)

    engine.generate(ar_request)

    composed = [r for r in collected if r["logger"] == "govsql.composer" and r["message"].startswith("Composed")]
    finished = [r for r in collected if r["message"].startswith("Request finished")]
    assert composed and finished
    assert composed[0]["report_type"] == "AR_OPEN"
    assert composed[0]["trace_id"] == finished[0]["trace_id"]
