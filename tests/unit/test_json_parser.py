"""Unit tests for the structured-output repair cascade."""

from __future__ import annotations

import pytest

from inkround.ai.json_parser import StructuredOutputError, parse_structured


def test_valid_json_is_returned_untouched() -> None:
  parsed = parse_structured('{"title": "A", "content": "B", "rating": 7}')
  assert parsed.strategy == "strict"
  assert parsed.value == {"title": "A", "content": "B", "rating": 7}


def test_fenced_block_is_unwrapped() -> None:
  parsed = parse_structured('```json\n{"title": "A", "content": "B"}\n```')
  assert parsed.strategy == "strip_fences"
  assert parsed.value == {"title": "A", "content": "B"}


def test_plain_prose_becomes_a_stub_record_with_heading_title() -> None:
  parsed = parse_structured("# The Storm\nRain fell on the harbour.")
  assert parsed.value == {"title": "The Storm", "content": "Rain fell on the harbour."}


def test_prose_stub_uses_the_requested_field() -> None:
  parsed = parse_structured("Lovely chapter, the ending surprised me.", stub_field="comment")
  assert parsed.value == {"comment": "Lovely chapter, the ending surprised me."}


def test_object_embedded_in_chatter_is_extracted() -> None:
  parsed = parse_structured('Here is your chapter: {"title": "A", "content": "B"} Enjoy!')
  assert parsed.strategy == "extract_candidate"
  assert parsed.value == {"title": "A", "content": "B"}


def test_pretty_printed_object_after_a_preamble_is_parsed() -> None:
  parsed = parse_structured('Here is the chapter:\n{\n  "title": "A",\n  "content": "B"\n}')
  assert parsed.strategy == "extract_candidate"
  assert parsed.value == {"title": "A", "content": "B"}


def test_bare_keys_after_a_preamble_are_repaired() -> None:
  parsed = parse_structured('Sure: {title: "T", content: "Body"}')
  assert parsed.strategy == "structural_repair"
  assert parsed.value == {"title": "T", "content": "Body"}


def test_prose_with_a_dangling_delimiter_is_not_stubbed() -> None:
  parsed = parse_structured("not json at all {")
  assert parsed.strategy != "strip_fences"
  assert "content" not in parsed.value


def test_stray_quotes_inside_narrative_fields_are_escaped() -> None:
  parsed = parse_structured('{"title": "Night", "content": "She said "run" and ran."}')
  assert parsed.strategy == "unescape_text_fields"
  assert parsed.value == {"title": "Night", "content": 'She said "run" and ran.'}


def test_bare_keys_and_trailing_commas_are_repaired() -> None:
  parsed = parse_structured('{title: "A", content: "B",}')
  assert parsed.strategy == "structural_repair"
  assert parsed.value == {"title": "A", "content": "B"}


def test_truncated_response_is_closed() -> None:
  parsed = parse_structured('{"title": "A", "content": "It was a dark')
  assert parsed.strategy == "structural_repair"
  assert parsed.value == {"title": "A", "content": "It was a dark"}


def test_known_fields_are_pulled_out_as_a_last_resort() -> None:
  parsed = parse_structured('rating => {"overall_rating": "8/10", "will_continue": TRUE, "comment": "Great ending')
  assert parsed.strategy == "extract_fields"
  assert parsed.value == {"overall_rating": 8, "will_continue": True}


def test_unrecoverable_output_reports_every_transform() -> None:
  with pytest.raises(StructuredOutputError) as excinfo:
    parse_structured("")
  assert len(excinfo.value.reasons) == 6
  assert excinfo.value.reasons[1] == "strip_fences: empty response"
