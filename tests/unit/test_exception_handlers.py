"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

from inkround.core.exceptions import _coerce_json_safe, _error_payload, _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Validation errors stay JSON-serializable and never echo the raw payload."""
  errors = [{"type": "value_error", "loc": ("body", "round"), "msg": "Value error, round must be positive.", "input": {"round": -1}, "ctx": {"error": ValueError("round must be positive."), "input": -1}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["loc"] == ["body", "round"]
  assert sanitized[0]["ctx"]["error"] == "ValueError: round must be positive."
  assert "input" not in sanitized[0]["ctx"]


def test_error_payload_includes_request_id_only_when_known() -> None:
  assert _error_payload("Not found") == {"detail": "Not found"}
  assert _error_payload("Not found", request_id="req-1") == {"detail": "Not found", "requestId": "req-1"}


def test_unknown_values_are_stringified() -> None:
  assert _coerce_json_safe({"when": object}) == {"when": str(object)}
  assert _coerce_json_safe(KeyError()) == "KeyError"
