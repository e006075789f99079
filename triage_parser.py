"""
Extraction of triage results from free-form LLM output.

Models wrap the JSON array in code fences, put prose before or after it and
leave trailing commas behind. The functions here find the array, repair the
commas and validate the required fields. Nothing in this module does I/O.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from models import TriageResult

PREVIEW_LIMIT = 500

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_LIST_ITEM_RE = re.compile(r"^(?:[*\-]|\d+\.?)\s+")

SUMMARY_SECTIONS = ("Today's Top 3", "Quick Wins", "Batch Delete")


class TriageParseError(ValueError):
    """The model output holds no usable triage array."""


def fix_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing ``}`` or ``]``."""
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def is_json_array(text: str) -> bool:
    text = text.strip()
    return text.startswith("[") and text.endswith("]")


def _preview(text: str) -> str:
    if len(text) > PREVIEW_LIMIT:
        return text[:PREVIEW_LIMIT] + "..."
    return text


def _load_array(candidate: str) -> Optional[list]:
    try:
        value = json.loads(fix_trailing_commas(candidate))
    except ValueError:
        return None
    return value if isinstance(value, list) else None


def _code_block_candidate(text: str) -> Optional[str]:
    match = _CODE_BLOCK_RE.search(text)
    if match:
        content = match.group(1).strip()
        if is_json_array(content):
            return content
    return None


def _matching_bracket(text: str, start: int) -> int:
    """
    Index of the ``]`` closing the ``[`` at ``start``, or -1.

    Braces count towards depth as well so nested objects cannot end the
    scan early. Characters inside JSON strings are ignored.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return i if ch == "]" else -1
            if depth < 0:
                return -1
    return -1


def _scan_candidates(text: str):
    """Yield every bracketed substring that parses as a non-empty JSON array, left to right."""
    search_from = 0
    while True:
        start = text.find("[", search_from)
        if start == -1:
            return
        end = _matching_bracket(text, start)
        if end != -1:
            candidate = text[start : end + 1].strip()
            parsed = _load_array(candidate)
            if parsed:
                yield candidate, parsed
        search_from = start + 1


def extract_json_array(text: str) -> Optional[str]:
    """
    Locate the triage array in ``text`` without validating its elements.

    A fenced code block whose body is an array wins; otherwise the first
    ``[`` that opens a parseable non-empty array does.
    """
    fenced = _code_block_candidate(text)
    if fenced is not None and _load_array(fenced) is not None:
        return fenced
    for candidate, _parsed in _scan_candidates(text):
        return candidate
    return None


def validation_error(index: int, element: Any) -> Optional[str]:
    """Describe what is missing from one result element, or None when it is usable."""
    if not isinstance(element, dict):
        return f"result {index}: not a JSON object"
    if not str(element.get("id") or "").strip():
        return f"result {index}: missing id"
    if not str(element.get("title") or "").strip():
        return f"result {index}: missing title"
    decision = element.get("triage_decision")
    if not isinstance(decision, dict) or not str(decision.get("action") or "").strip():
        return f"result {index}: missing triage_decision.action"
    return None


def _validate(elements: list) -> List[TriageResult]:
    results = []
    for index, element in enumerate(elements):
        error = validation_error(index, element)
        if error:
            raise TriageParseError(error)
        results.append(TriageResult.from_dict(element))
    return results


def parse_triage_response(text: str) -> List[TriageResult]:
    """
    Return the validated triage results contained in raw model output.

    Raises:
        TriageParseError: If no array can be found, or if the chosen array
            has an element missing id, title or triage_decision.action.
    """
    fenced = _code_block_candidate(text)
    rejected: Optional[TriageParseError] = None
    if fenced is not None:
        parsed = _load_array(fenced)
        if parsed is not None:
            try:
                return _validate(parsed)
            except TriageParseError as e:
                rejected = e

    for candidate, parsed in _scan_candidates(text):
        if rejected is not None and candidate == fenced:
            continue
        return _validate(parsed)

    if rejected is not None:
        raise rejected
    raise TriageParseError(f"no JSON array found in response: {_preview(text)}")


@dataclass
class Summary:
    """Optional markdown sections some models append after the array."""

    today_top3: List[str] = field(default_factory=list)
    quick_wins: List[str] = field(default_factory=list)
    batch_delete: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.today_top3 or self.quick_wins or self.batch_delete)


def _extract_section(text: str, name: str) -> List[str]:
    lowered = text.lower()
    header = f"**{name}**".lower()
    start = lowered.find(header)
    if start == -1:
        return []
    start += len(header)

    end = len(text)
    for other in SUMMARY_SECTIONS:
        idx = lowered.find(f"**{other}**".lower(), start)
        if idx != -1 and idx < end:
            end = idx

    items = []
    for line in text[start:end].splitlines():
        line = line.strip()
        if _LIST_ITEM_RE.match(line):
            item = _LIST_ITEM_RE.sub("", line, count=1)
            if item:
                items.append(item)
    return items


def parse_summary(text: str) -> Summary:
    return Summary(
        today_top3=_extract_section(text, "Today's Top 3"),
        quick_wins=_extract_section(text, "Quick Wins"),
        batch_delete=_extract_section(text, "Batch Delete"),
    )
