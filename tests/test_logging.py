# tests/test_logging.py
from __future__ import annotations

import json
import logging

import pytest
from loguru import logger

from reeldrop.core.logger import format_json


@pytest.fixture()
def captured():
    lines = []
    sink_id = logger.add(lines.append, format=format_json, level="INFO")
    yield lines
    logger.remove(sink_id)


def test_stdlib_records_reach_loguru_with_request_id(captured):
    with logger.contextualize(request_id="7d3c1b2a-0000-4000-8000-000000000001"):
        logging.getLogger("reeldrop.services.test").info("archived %d files", 3)

    (line,) = [json.loads(s) for s in captured]
    assert line["message"] == "archived 3 files"
    assert line["logger"] == "reeldrop.services.test"
    assert line["request_id"] == "7d3c1b2a-0000-4000-8000-000000000001"


def test_records_outside_a_request_are_tagged(captured):
    logger.bind(file_id="f-1").info("sweep done")

    (line,) = [json.loads(s) for s in captured]
    assert line["request_id"] == "N/A"
    assert line["file_id"] == "f-1"
