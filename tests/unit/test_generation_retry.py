"""Unit tests for regenerate-on-failure calls and response decoding."""

from __future__ import annotations

import json

import msgspec
import pytest

from inkround.ai.backoff import GenerationFailedError, RetryPolicy, generate_structured
from inkround.ai.json_parser import StructuredOutputError
from inkround.ai.schemas import decode_chapter, decode_chapter_plan, decode_feedback, decode_outline


class _Script:
  """Yield scripted responses; exceptions in the script are raised."""

  def __init__(self, *responses: object) -> None:
    self._responses = list(responses)
    self.calls = 0

  async def __call__(self) -> str:
    self.calls += 1
    response = self._responses.pop(0)
    if isinstance(response, Exception):
      raise response
    return str(response)


class _Sleeps:
  def __init__(self) -> None:
    self.delays: list[float] = []

  async def __call__(self, delay: float) -> None:
    self.delays.append(delay)


def test_delay_doubles_and_is_capped() -> None:
  policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=10000, jitter=0)
  assert [policy.delay_seconds(attempt) for attempt in (1, 2, 3, 5)] == [1.0, 2.0, 4.0, 10.0]


@pytest.mark.anyio
async def test_each_failure_triggers_a_fresh_generation_call() -> None:
  script = _Script(ConnectionError("reset"), "not json at all {", json.dumps({"title": "T", "content": "Body"}))
  sleeps = _Sleeps()
  policy = RetryPolicy(max_attempts=3, base_delay_ms=100, max_delay_ms=1000, jitter=0)

  draft = await generate_structured(script, decode_chapter, policy=policy, operation="chapter", sleep=sleeps)

  assert draft.content == "Body"
  assert script.calls == 3
  assert sleeps.delays == [0.1, 0.2]


@pytest.mark.anyio
async def test_exhausted_attempts_surface_the_last_error() -> None:
  script = _Script(json.dumps({"title": "T", "content": "  "}), json.dumps({"title": "T", "content": ""}))
  policy = RetryPolicy(max_attempts=2, base_delay_ms=1, max_delay_ms=1, jitter=0)

  with pytest.raises(GenerationFailedError) as excinfo:
    await generate_structured(script, decode_chapter, policy=policy, operation="chapter", sleep=_Sleeps())

  assert excinfo.value.attempts == 2
  assert isinstance(excinfo.value.last_error, ValueError)
  assert script.calls == 2


@pytest.mark.anyio
async def test_parse_failures_are_retried_like_call_failures() -> None:
  script = _Script("", json.dumps({"overall_rating": 6, "comment": "Solid chapter overall."}))
  feedback = await generate_structured(script, decode_feedback, policy=RetryPolicy(max_attempts=2, jitter=0, base_delay_ms=1), operation="reader", sleep=_Sleeps())
  assert feedback.rating == 6
  assert script.calls == 2


def test_feedback_rating_rounds_and_maps_to_sentiment() -> None:
  feedback = decode_feedback({"overall_rating": "7.6", "praise": "Vivid", "will_continue": True})
  assert feedback.rating == 8
  assert feedback.sentiment == pytest.approx(0.52)


def test_feedback_out_of_range_rating_is_rejected() -> None:
  with pytest.raises(msgspec.ValidationError):
    decode_feedback({"overall_rating": 11, "comment": "Too generous"})


def test_feedback_without_text_is_rejected() -> None:
  with pytest.raises(ValueError):
    decode_feedback({"overall_rating": 7})


def test_single_key_envelope_is_unwrapped() -> None:
  draft = decode_chapter({"chapter": {"title": "T", "content": "Body"}})
  assert draft.title == "T"


def test_outline_requires_chapters() -> None:
  with pytest.raises((ValueError, msgspec.ValidationError)):
    decode_outline({"title": "T", "summary": "S", "chapters": []})


def test_chapter_plan_accepts_a_full_outline_and_keeps_the_last_entry() -> None:
  plan = decode_chapter_plan({"title": "Book", "chapters": [{"number": 1, "title": "One"}, {"number": 2, "title": "Two", "reason": "feedback"}]})
  assert plan.title == "Two"
  assert plan.reason == "feedback"


def test_structured_output_error_is_a_value_error() -> None:
  assert issubclass(StructuredOutputError, ValueError)
