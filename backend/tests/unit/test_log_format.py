import json
import logging

from app.obs.logging import JSONLogFormatter, bind_context, reset_context


def _record(**extra) -> logging.LogRecord:
	record = logging.LogRecord("app.test", logging.WARNING, __file__, 1, "location write failed", (), None)
	for key, value in extra.items():
		setattr(record, key, value)
	return record


def test_coordinates_are_redacted_but_latency_is_kept():
	payload = json.loads(
		JSONLogFormatter().format(
			_record(lat=10.0, lng=20.0, location={"lat": 1, "lng": 2}, latency_ms=3.5, viewer="u1")
		)
	)
	assert payload["lat"] == "[redacted]"
	assert payload["lng"] == "[redacted]"
	assert payload["location"] == "[redacted]"
	assert payload["latency_ms"] == 3.5
	assert payload["viewer"] == "u1"
	assert payload["level"] == "warning"


def test_bound_request_context_is_included():
	tokens = bind_context(request_id="req-1")
	try:
		payload = json.loads(JSONLogFormatter().format(_record()))
	finally:
		reset_context(tokens)
	assert payload["request_id"] == "req-1"
