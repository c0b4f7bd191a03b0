"""
agent/parser.py — Response Interpreter

Some models return tool calls as structured objects on the transport;
others write them into the text. This module pulls tool calls out of raw
assistant text and returns what is left as clean content.

Conventions understood (in priority order when matches overlap):
  1. <think>...</think> reasoning block (first one only, always stripped)
  2. Fenced code blocks whose JSON names a tool
  3. <tool_use>/<tool_call>/<function_call> wrapper tags around JSON
  4. A JSON object carrying a "tool_calls" array
  5. Inline {"name": ..., "arguments": {...}} objects
  6. Bare tool_name({...}) calls for known tools (never stripped)

Each convention is an independent detector: (text, tool_names) -> [Detection].
All detectors run; a detection overlapping an already accepted span is
dropped. Adding a convention means adding a detector to _DETECTORS.

parse_response() never raises. Text that looks like a tool call but does
not parse is ordinary content.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional, Union

from localbot.brain.types import ToolCall, ToolSchema, generate_tool_call_id
from localbot.observability.logger import get_logger

log = get_logger(__name__)

ToolNames = Optional[frozenset[str]]

_THINK_RE = re.compile(r"<think>(.*?)</think>", re.IGNORECASE | re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(
    r"<(tool_use|tool_call|function_call)>(.*?)</\1>", re.IGNORECASE | re.DOTALL
)
_BARE_CALL_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*\(\s*(?=\{)")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

_decoder = json.JSONDecoder()


# ─────────────────────────────────────────────────────────────────────────────
# Result types
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class ParsedResponse:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    reasoning: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass(frozen=True)
class Detection:
    """Tool calls found by one detector and the [start, end) span they came from."""
    calls: tuple[ToolCall, ...]
    span: tuple[int, int]
    strip: bool = True

    def overlaps(self, span: tuple[int, int]) -> bool:
        return self.span[0] < span[1] and span[0] < self.span[1]


Detector = Callable[[str, ToolNames], list[Detection]]


# ─────────────────────────────────────────────────────────────────────────────
# Normalisation
# ─────────────────────────────────────────────────────────────────────────────


def normalize_tool_call(obj: Any) -> Optional[ToolCall]:
    """
    Collapse any accepted call shape into a canonical ToolCall.

    Accepted shapes:
        {"id": ..., "type": "function", "function": {"name": ..., "arguments": ...}}
        {"name": ..., "arguments": ...}        ("parameters" accepted as an alias)
        {"tool": ..., "input": ...}

    Returns None for anything else.
    """
    if not isinstance(obj, dict):
        return None

    fn = obj.get("function")
    if isinstance(fn, dict):
        name = fn.get("name")
        args = fn.get("arguments", fn.get("parameters"))
    elif isinstance(obj.get("name"), str):
        name = obj["name"]
        args = obj.get("arguments", obj.get("parameters"))
    elif isinstance(obj.get("tool"), str):
        name = obj["tool"]
        args = obj.get("input", obj.get("arguments"))
    elif isinstance(fn, str):
        name = fn
        args = obj.get("arguments", obj.get("parameters"))
    else:
        return None

    if not isinstance(name, str) or not name.strip():
        return None

    if args is None:
        args = "{}"
    elif not isinstance(args, str):
        args = json.dumps(args)

    call_id = obj.get("id")
    return ToolCall.create(
        name=name.strip(),
        arguments=args,
        id=call_id if isinstance(call_id, str) and call_id else generate_tool_call_id(),
    )


def _known(name: str, tool_names: ToolNames) -> bool:
    return tool_names is None or name in tool_names


def _calls_from_payload(payload: Any, tool_names: ToolNames) -> list[ToolCall]:
    """Normalise a decoded payload that may hold one call, a list, or a tool_calls wrapper."""
    if isinstance(payload, dict) and isinstance(payload.get("tool_calls"), list):
        items: Iterable[Any] = payload["tool_calls"]
    elif isinstance(payload, list):
        items = payload
    else:
        items = [payload]

    calls: list[ToolCall] = []
    for item in items:
        tc = normalize_tool_call(item)
        if tc is not None and _known(tc.function.name, tool_names):
            calls.append(tc)
    return calls


def _decode_lenient(text: str) -> Any:
    """Decode JSON, falling back to try_fix_json. Raises ValueError if both fail."""
    text = text.strip()
    try:
        return json.loads(text)
    except ValueError:
        fixed = try_fix_json(text)
        if fixed is None:
            raise
        return json.loads(fixed)


@lru_cache(maxsize=8)
def _scan_json_objects(text: str) -> tuple[tuple[int, int, Any], ...]:
    """
    (start, end, value) for every outermost JSON object embedded in text.

    One pass pairs braces, ignoring those inside string literals; only
    balanced candidates are decoded, so unclosed nesting is never retried.
    Cached because several detectors scan the same text.
    """
    pairs: list[tuple[int, int]] = []
    stack: list[int] = []
    in_string = escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch in "\"\n":
                # JSON strings never hold a raw newline
                in_string = False
            continue
        if ch == "{":
            stack.append(i)
        elif ch == "}" and stack:
            pairs.append((stack.pop(), i + 1))
        elif ch == '"' and stack:
            in_string = True

    pairs.sort()
    found: list[tuple[int, int, Any]] = []
    covered = 0
    for start, end in pairs:
        if start < covered:
            continue
        try:
            value = json.loads(text[start:end])
        except (ValueError, RecursionError):
            continue
        found.append((start, end, value))
        covered = end
    return tuple(found)


# ─────────────────────────────────────────────────────────────────────────────
# Detectors
# ─────────────────────────────────────────────────────────────────────────────


def detect_fenced_blocks(text: str, tool_names: ToolNames) -> list[Detection]:
    found: list[Detection] = []
    for m in _FENCE_RE.finditer(text):
        body = m.group(1).strip()
        if not body.startswith(("{", "[")):
            continue
        try:
            payload = _decode_lenient(body)
        except ValueError:
            continue
        calls = _calls_from_payload(payload, tool_names)
        if calls:
            found.append(Detection(tuple(calls), m.span()))
    return found


def detect_wrapper_tags(text: str, tool_names: ToolNames) -> list[Detection]:
    found: list[Detection] = []
    for m in _TAG_RE.finditer(text):
        try:
            payload = _decode_lenient(m.group(2))
        except ValueError:
            continue
        calls = _calls_from_payload(payload, None)
        if calls:
            found.append(Detection(tuple(calls), m.span()))
    return found


def detect_tool_calls_object(text: str, tool_names: ToolNames) -> list[Detection]:
    found: list[Detection] = []
    for start, end, value in _scan_json_objects(text):
        if not isinstance(value, dict) or not isinstance(value.get("tool_calls"), list):
            continue
        calls = _calls_from_payload(value, None)
        if calls:
            found.append(Detection(tuple(calls), (start, end)))
    return found


def detect_inline_objects(text: str, tool_names: ToolNames) -> list[Detection]:
    found: list[Detection] = []
    for start, end, value in _scan_json_objects(text):
        if not isinstance(value, dict) or not isinstance(value.get("name"), str):
            continue
        args = value.get("arguments", value.get("parameters"))
        if not isinstance(args, dict):
            continue
        if not _known(value["name"], tool_names):
            continue
        tc = normalize_tool_call(value)
        if tc is not None:
            found.append(Detection((tc,), (start, end)))
    return found


def detect_bare_calls(text: str, tool_names: ToolNames) -> list[Detection]:
    if not tool_names:
        return []
    found: list[Detection] = []
    for m in _BARE_CALL_RE.finditer(text):
        name = m.group(1)
        if name not in tool_names:
            continue
        try:
            args, end = _decoder.raw_decode(text, m.end())
        except (ValueError, RecursionError):
            continue
        if not isinstance(args, dict):
            continue
        close = end
        while close < len(text) and text[close].isspace():
            close += 1
        if close >= len(text) or text[close] != ")":
            continue
        found.append(
            Detection((ToolCall.create(name, args),), (m.start(), close + 1), strip=False)
        )
    return found


_DETECTORS: tuple[Detector, ...] = (
    detect_fenced_blocks,
    detect_wrapper_tags,
    detect_tool_calls_object,
    detect_inline_objects,
    detect_bare_calls,
)


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def _tool_names(available_tools: Optional[Iterable[Union[ToolSchema, str]]]) -> ToolNames:
    if available_tools is None:
        return None
    return frozenset(t if isinstance(t, str) else t.function.name for t in available_tools)


def parse_response(
    text: str,
    available_tools: Optional[Iterable[Union[ToolSchema, str]]] = None,
) -> ParsedResponse:
    """
    Split raw assistant text into (content, tool_calls, reasoning).

    available_tools may be tool schemas or plain names. When given, calls
    naming unknown tools are ignored by the name-checking detectors, and
    bare tool_name({...}) calls are recognised at all.
    """
    if not text:
        return ParsedResponse(content="")

    tool_names = _tool_names(available_tools)
    accepted: list[Detection] = []
    reasoning: Optional[str] = None

    think = _THINK_RE.search(text)
    if think:
        reasoning = think.group(1).strip()
        accepted.append(Detection((), think.span()))

    for detector in _DETECTORS:
        try:
            detections = detector(text, tool_names)
        except Exception as e:
            log.debug("parser.detector_failed", detector=detector.__name__, error=str(e))
            continue
        for det in detections:
            if any(prev.overlaps(det.span) for prev in accepted):
                continue
            accepted.append(det)

    accepted.sort(key=lambda d: d.span[0])

    content_parts: list[str] = []
    cursor = 0
    tool_calls: list[ToolCall] = []
    for det in accepted:
        tool_calls.extend(det.calls)
        if det.strip:
            content_parts.append(text[cursor:det.span[0]])
            cursor = det.span[1]
    content_parts.append(text[cursor:])

    content = _EXCESS_NEWLINES_RE.sub("\n\n", "".join(content_parts)).strip()

    if tool_calls:
        log.debug(
            "parser.tool_calls_found",
            count=len(tool_calls),
            tools=[tc.function.name for tc in tool_calls],
        )
    return ParsedResponse(content=content, tool_calls=tool_calls, reasoning=reasoning)


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _kind_matches(value: Any, expected: str) -> Optional[bool]:
    """True/False for known JSON Schema types, None when the type is not checked."""
    is_bool = isinstance(value, bool)
    checks: dict[str, Callable[[Any], bool]] = {
        "string": lambda v: isinstance(v, str),
        "integer": lambda v: isinstance(v, int) and not is_bool,
        "number": lambda v: isinstance(v, (int, float)) and not is_bool,
        "boolean": lambda v: is_bool,
        "array": lambda v: isinstance(v, list),
        "object": lambda v: isinstance(v, dict),
        "null": lambda v: v is None,
    }
    check = checks.get(expected)
    return check(value) if check else None


def validate_tool_call(tool_call: ToolCall, schema: ToolSchema) -> list[str]:
    """
    Check a tool call against its schema. Returns mismatch descriptions;
    an empty list means the call is valid. Pure: same input, same output.
    """
    name = tool_call.function.name
    expected_name = schema.function.name
    if name != expected_name:
        return [f"Tool name mismatch: {name} vs {expected_name}"]

    try:
        args = json.loads(tool_call.function.arguments or "{}")
    except (ValueError, RecursionError):
        return ["Invalid JSON in arguments"]

    if not isinstance(args, dict):
        return [f"Arguments must be a JSON object, got {_json_kind(args)}"]

    params = schema.function.parameters or {}
    properties: dict[str, Any] = params.get("properties") or {}
    errors: list[str] = []

    for param in params.get("required") or []:
        if param not in args:
            errors.append(f"Missing required parameter: {param}")

    for key, value in args.items():
        prop = properties.get(key)
        if not isinstance(prop, dict):
            continue
        declared = prop.get("type")
        if declared is None or declared == "any":
            continue
        kinds = declared if isinstance(declared, list) else [declared]
        results = [_kind_matches(value, k) for k in kinds]
        if any(r is None or r for r in results):
            continue
        expected = " | ".join(str(k) for k in kinds)
        errors.append(f"Parameter {key}: expected {expected}, got {_json_kind(value)}")

    return errors


# ─────────────────────────────────────────────────────────────────────────────
# Repair
# ─────────────────────────────────────────────────────────────────────────────

_UNQUOTED_KEY_RE = re.compile(r"([{,])\s*([A-Za-z_][A-Za-z0-9_]*)\s*:")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_VALUE_RE = re.compile(r":\s*([A-Za-z][A-Za-z0-9_]*)\s*(?=[,}\]])")
_JSON_LITERALS = {"true", "false", "null"}


def _quote_bare_value(m: re.Match) -> str:
    word = m.group(1)
    if word in _JSON_LITERALS:
        return f": {word}"
    return f': "{word}"'


def try_fix_json(text: str) -> Optional[str]:
    """
    Best-effort repair of almost-JSON. Returns text that parses, or None.

    Valid JSON is returned unchanged. Otherwise tries, in order: single to
    double quotes, quoting bare keys, dropping trailing commas, quoting
    bare-word values (true/false/null kept).
    """
    try:
        json.loads(text)
        return text
    except (ValueError, RecursionError):
        pass

    fixed = text.replace("'", '"')
    fixed = _UNQUOTED_KEY_RE.sub(r'\1"\2":', fixed)
    fixed = _TRAILING_COMMA_RE.sub(r"\1", fixed)
    fixed = _BARE_VALUE_RE.sub(_quote_bare_value, fixed)

    try:
        json.loads(fixed)
    except (ValueError, RecursionError):
        return None
    return fixed
