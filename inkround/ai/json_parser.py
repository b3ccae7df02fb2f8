"""Lenient structured-output parsing for generative service responses.

Parsing runs an ordered cascade of repair transforms. Each transform either
produces a decoded value or reports why it could not, and the first success
wins. Valid JSON is returned untouched by the first strict pass.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

DEFAULT_TEXT_FIELDS: tuple[str, ...] = ("content", "summary", "comment", "praise", "critique", "title", "description", "reason")
DEFAULT_NUMBER_FIELDS: tuple[str, ...] = ("overall_rating", "rating", "word_count_target", "number")
DEFAULT_BOOL_FIELDS: tuple[str, ...] = ("will_continue",)

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)```", re.DOTALL)
_FENCE_MARKER_RE = re.compile(r"```[A-Za-z0-9_-]*")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_HEADING_RE = re.compile(r"^\s*#{1,6}\s*(.+?)\s*$")
_STRAY_QUOTE_RE = re.compile(r'(?<!\\)"')
_LITERAL_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.-+")
# A string value closes where a quote is followed by the next key or the end of the object.
_VALUE_END_RE = re.compile(r'"(?=\s*(?:,\s*"[A-Za-z_][A-Za-z0-9_]*"\s*:|\}\s*(?:[,\]}]|$)))')


class StructuredOutputError(ValueError):
  """Raised when every repair transform failed to recover a structured value."""

  def __init__(self, reasons: list[str]) -> None:
    self.reasons = reasons
    super().__init__("Unable to recover structured output: " + "; ".join(reasons))


@dataclass
class ParseContext:
  """Working state shared by the transforms of one parse."""

  raw: str
  text_fields: tuple[str, ...]
  number_fields: tuple[str, ...]
  bool_fields: tuple[str, ...]
  stub_field: str
  candidate: str = ""
  notes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RepairOutcome:
  """Result of one transform: a decoded value or the reason it failed."""

  ok: bool
  value: Any = None
  reason: str | None = None

  @classmethod
  def success(cls, value: Any) -> RepairOutcome:
    return cls(ok=True, value=value)

  @classmethod
  def failure(cls, reason: str) -> RepairOutcome:
    return cls(ok=False, reason=reason)


@dataclass(frozen=True)
class RepairTransform:
  name: str
  apply: Callable[[ParseContext], RepairOutcome]


@dataclass(frozen=True)
class ParsedOutput:
  """Decoded value plus the name of the transform that produced it."""

  value: Any
  strategy: str


def _loads(text: str) -> RepairOutcome:
  try:
    return RepairOutcome.success(json.loads(text))
  except json.JSONDecodeError as exc:
    return RepairOutcome.failure(f"{exc.msg} at line {exc.lineno} column {exc.colno}")


def parse_strict(ctx: ParseContext) -> RepairOutcome:
  """Accept already-valid JSON without modification."""
  return _loads(ctx.raw.strip())


def strip_fences(ctx: ParseContext) -> RepairOutcome:
  """Remove fence markers; wrap undelimited prose as a stub record."""
  text = _FENCE_MARKER_RE.sub("", ctx.raw).strip()
  ctx.candidate = text
  if not text:
    return RepairOutcome.failure("empty response")
  if "{" in text or "[" in text:
    # Delimited output goes through the remaining transforms when it is not clean JSON.
    return _loads(text)

  # Plain prose: keep it as the designated free-text field.
  lines = text.splitlines()
  stub: dict[str, Any] = {}
  heading = _HEADING_RE.match(lines[0])
  if heading and len(lines) > 1:
    stub["title"] = heading.group(1)
    text = "\n".join(lines[1:]).strip()
  stub[ctx.stub_field] = text
  ctx.notes.append("wrapped prose as stub")
  return RepairOutcome.success(stub)


def extract_candidate(ctx: ParseContext) -> RepairOutcome:
  """Narrow the text to the fenced block or the first balanced brace region."""
  fenced = _FENCE_RE.search(ctx.raw)
  source = fenced.group(1) if fenced else ctx.candidate or ctx.raw
  block = _extract_json_block(source)
  if block is None:
    # Unbalanced output still gets the later passes, starting at the first delimiter.
    start = min((index for index in (source.find("{"), source.find("[")) if index >= 0), default=-1)
    if start < 0:
      return RepairOutcome.failure("no delimited region")
    ctx.candidate = source[start:].strip()
    return RepairOutcome.failure("unbalanced delimited region")
  ctx.candidate = block
  return _loads(block)


def unescape_text_fields(ctx: ParseContext) -> RepairOutcome:
  """Escape stray quotation marks inside known narrative fields."""
  repaired = _escape_field_quotes(ctx.candidate, ctx.text_fields)
  if repaired == ctx.candidate:
    return RepairOutcome.failure("no stray quotes in known fields")
  ctx.candidate = repaired
  return _loads(repaired)


def structural_repair(ctx: ParseContext) -> RepairOutcome:
  """Fix trailing commas, bare keys and missing commas, then close open containers."""
  repaired = _strip_trailing_commas(ctx.candidate)
  repaired = _quote_unquoted_keys(repaired)
  repaired = _insert_missing_commas(repaired)
  outcome = _loads(repaired)
  if outcome.ok:
    return outcome
  closed = _close_open_containers(repaired)
  if closed != repaired:
    return _loads(closed)
  return outcome


def extract_fields(ctx: ParseContext) -> RepairOutcome:
  """Last resort: pull known field values out by pattern match."""
  source = ctx.candidate or ctx.raw
  found: dict[str, Any] = {}

  for name in ctx.text_fields:
    match = re.search(rf'"{re.escape(name)}"\s*:\s*"', source)
    if match is None:
      continue
    value = _read_loose_string(source, match.end())
    if value is not None:
      found[name] = value

  for name in ctx.number_fields:
    match = re.search(rf'"{re.escape(name)}"\s*:\s*"?(-?\d+(?:\.\d+)?)', source)
    if match:
      number = float(match.group(1))
      found[name] = int(number) if number.is_integer() else number

  for name in ctx.bool_fields:
    match = re.search(rf'"{re.escape(name)}"\s*:\s*(true|false)', source, re.IGNORECASE)
    if match:
      found[name] = match.group(1).lower() == "true"

  if not found:
    return RepairOutcome.failure("no known fields found")
  return RepairOutcome.success(found)


TRANSFORMS: tuple[RepairTransform, ...] = (
  RepairTransform("strict", parse_strict),
  RepairTransform("strip_fences", strip_fences),
  RepairTransform("extract_candidate", extract_candidate),
  RepairTransform("unescape_text_fields", unescape_text_fields),
  RepairTransform("structural_repair", structural_repair),
  RepairTransform("extract_fields", extract_fields),
)


def parse_structured(
  raw: str,
  *,
  text_fields: tuple[str, ...] = DEFAULT_TEXT_FIELDS,
  number_fields: tuple[str, ...] = DEFAULT_NUMBER_FIELDS,
  bool_fields: tuple[str, ...] = DEFAULT_BOOL_FIELDS,
  stub_field: str = "content",
  transforms: tuple[RepairTransform, ...] = TRANSFORMS,
) -> ParsedOutput:
  """Run the repair cascade and return the first successfully decoded value."""
  ctx = ParseContext(raw=raw or "", text_fields=text_fields, number_fields=number_fields, bool_fields=bool_fields, stub_field=stub_field)
  reasons: list[str] = []
  for transform in transforms:
    outcome = transform.apply(ctx)
    if outcome.ok:
      return ParsedOutput(value=outcome.value, strategy=transform.name)
    reasons.append(f"{transform.name}: {outcome.reason}")
  raise StructuredOutputError(reasons)


def _escape_field_quotes(text: str, fields: tuple[str, ...]) -> str:
  """Rewrite each known field's value with interior quotes escaped."""
  for name in fields:
    pattern = re.compile(rf'"{re.escape(name)}"\s*:\s*"')
    search_from = 0
    while True:
      match = pattern.search(text, search_from)
      if match is None:
        break
      start = match.end()
      end_match = _VALUE_END_RE.search(text, start)
      if end_match is None:
        break
      end = end_match.start()
      value = text[start:end]
      escaped = _escape_stray_quotes(value)
      text = text[:start] + escaped + text[end:]
      search_from = start + len(escaped) + 1
  return text


def _read_loose_string(text: str, start: int) -> str | None:
  """Read a string value that may contain stray quotes, decoding standard escapes."""
  end_match = _VALUE_END_RE.search(text, start)
  if end_match is not None:
    value = text[start : end_match.start()]
  else:
    closing = text.find('"', start)
    if closing < 0:
      return None
    value = text[start:closing]
  try:
    return json.loads('"' + _escape_stray_quotes(value).replace("\n", "\\n") + '"')
  except json.JSONDecodeError:
    return value


def _escape_stray_quotes(value: str) -> str:
  return _STRAY_QUOTE_RE.sub(lambda _: '\\"', value)


def _extract_json_block(raw: str) -> str | None:
  """Locate the first balanced JSON object/array for recovery parsing."""
  start_index: int | None = None
  depth = 0
  in_string = False
  escape = False

  for index, char in enumerate(raw):
    if start_index is None:
      if char in "{[":
        start_index = index
        depth = 1
      continue

    if in_string:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      continue

    if char == '"':
      in_string = True
    elif char in "{[":
      depth += 1
    elif char in "}]":
      depth -= 1
      if depth == 0:
        return raw[start_index : index + 1]

  return None


def _strip_trailing_commas(raw: str) -> str:
  """Remove trailing commas before closing brackets."""
  return _TRAILING_COMMA_RE.sub(r"\1", raw)


def _quote_unquoted_keys(raw: str) -> str:
  """Wrap bare object keys in quotes to handle JS-style output."""
  output: list[str] = []
  in_string = False
  escape = False
  expecting_key = False
  index = 0

  while index < len(raw):
    char = raw[index]

    if in_string:
      output.append(char)
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      index += 1
      continue

    if char == '"':
      in_string = True
      output.append(char)
      index += 1
      continue

    if char in "{,":
      expecting_key = True
    elif char in "}:":
      expecting_key = False

    # Quote identifier-like tokens that sit where a key is expected and precede a colon.
    if expecting_key and (char.isalpha() or char == "_"):
      start = index
      while index < len(raw) and (raw[index].isalnum() or raw[index] in "_-"):
        index += 1
      key = raw[start:index]
      probe = index
      while probe < len(raw) and raw[probe].isspace():
        probe += 1
      if probe < len(raw) and raw[probe] == ":":
        output.append(f'"{key}"')
        output.append(raw[index:probe])
        expecting_key = False
      else:
        output.append(key)
      continue

    output.append(char)
    index += 1

  return "".join(output)


def _insert_missing_commas(raw: str) -> str:
  """Insert commas between adjacent values that ran together."""
  output: list[str] = []
  in_string = False
  escape = False
  value_ended = False
  previous = ""

  for char in raw:
    if in_string:
      output.append(char)
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
        value_ended = True
      previous = char
      continue

    if char.isspace():
      output.append(char)
      previous = char
      continue

    # Characters of the same bare literal continue one token.
    same_literal = char in _LITERAL_CHARS and previous in _LITERAL_CHARS
    # A new value or key right after a finished value needs a separator.
    if value_ended and not same_literal and (char in '"{[' or char.isdigit() or char == "-"):
      output.append(",")

    if char == '"':
      in_string = True
      value_ended = False
    elif char in "}]":
      value_ended = True
    elif char in ",:{[":
      value_ended = False
    elif char.isalnum() or char in ".-+":
      # Bare literals (numbers, true/false/null) end at the next delimiter.
      value_ended = True
    output.append(char)
    previous = char

  return "".join(output)


def _close_open_containers(raw: str) -> str:
  """Append closers for containers left open by a truncated response."""
  stack: list[str] = []
  in_string = False
  escape = False
  for char in raw:
    if in_string:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      continue
    if char == '"':
      in_string = True
    elif char in "{[":
      stack.append("}" if char == "{" else "]")
    elif char in "}]" and stack:
      stack.pop()
  suffix = '"' if in_string else ""
  return raw.rstrip().rstrip(",") + suffix + "".join(reversed(stack))
