"""Tests for incident ids and the error response shape."""

import json
import logging
import re
from datetime import UTC, datetime

from cortex_insights.core.incident import (
    error_response,
    generate_incident_id,
    insight_error_response,
)
from cortex_insights.core.insight_errors import InvalidRequestError


def test_incident_id_format():
    incident_id = generate_incident_id(datetime(2025, 3, 4, tzinfo=UTC))
    assert re.match(r"^INC-2025-[A-Z0-9]{8}$", incident_id)


def test_incident_ids_are_unique():
    assert len({generate_incident_id() for _ in range(200)}) == 200


def test_error_response_logs_incident(caplog):
    logger = logging.getLogger("tests.incident")

    with caplog.at_level(logging.WARNING, logger="tests.incident"):
        response = error_response(logger, 404, "Not here", "assessment x missing", assessment_id="x")

    body = json.loads(response.body)
    assert response.status_code == 404
    assert body["userMessage"] == "Not here"
    assert body["httpStatus"] == 404
    record = caplog.records[-1]
    assert record.incident_id == body["incidentId"]
    assert record.extra_data["assessment_id"] == "x"
    assert "assessment x missing" in record.getMessage()


def test_insight_error_response_uses_error_status_and_message(caplog):
    logger = logging.getLogger("tests.incident")
    error = InvalidRequestError("Invalid request to /v1/insights/context-mirror: bad uuid")

    with caplog.at_level(logging.WARNING, logger="tests.incident"):
        response = insight_error_response(logger, error, assessment_id="x")

    body = json.loads(response.body)
    assert response.status_code == 400
    assert body["httpStatus"] == 400
    assert body["userMessage"] == InvalidRequestError.user_message
    record = caplog.records[-1]
    assert record.incident_id == body["incidentId"]
    assert "bad uuid" in record.getMessage()
    assert "bad uuid" not in body["userMessage"]
