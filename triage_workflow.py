#!/usr/bin/env python3
"""
Triage Workflow Module for Readwise Triage
Connects fetched items, the triage store, the LLM client and the Reader
client: export/import of the manual-triage interchange, applying LLM
decisions, and turning stored decisions into Reader updates.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from data_parser import serialize_items_for_llm
from models import ACTIONS, PRIORITIES, Item, TriageResult, UpdateRequest
from prompts import FULL_TRIAGE_PROMPT_TEMPLATE, ITEMS_MARKER
from storage import TriageStore, save_raw_json
from triage_parser import (
    Summary,
    extract_json_array,
    fix_trailing_commas,
    parse_summary,
)

logger = logging.getLogger(__name__)

DEFAULT_LLM_BATCH_SIZE = 10


class TriageImportError(Exception):
    """Nothing in the pasted results could be applied."""


@dataclass
class ImportSummary:
    applied: int = 0
    total: int = 0
    warnings: List[str] = field(default_factory=list)
    summary: Summary = field(default_factory=Summary)

    @property
    def message(self) -> str:
        if self.warnings:
            return (
                f"Applied {self.applied}/{self.total} results; warnings: "
                + "; ".join(self.warnings)
            )
        return f"Successfully applied triage results to {self.applied} items"


# ---------------------------------------------------------------------------
# Export for manual triage
# ---------------------------------------------------------------------------


def select_items(
    items: Iterable[Item], store: TriageStore, selected_ids: Optional[Iterable[str]] = None
) -> List[Item]:
    """Explicit selection if given, otherwise every item without a stored decision."""
    items = list(items)
    if selected_ids:
        wanted = set(selected_ids)
        return [item for item in items if item.id in wanted]
    untriaged = set(store.get_untriaged_ids([item.id for item in items]))
    return [item for item in items if item.id in untriaged]


def export_payload(items: Iterable[Item]) -> List[Dict[str, object]]:
    return [
        {
            "id": item.id,
            "title": item.title,
            "url": item.url,
            "summary": item.summary,
            "category": item.category,
            "source": item.source,
            "word_count": item.word_count,
            "reading_time": item.reading_time,
        }
        for item in items
    ]


def export_items_for_triage(
    items: Iterable[Item],
    store: TriageStore,
    selected_ids: Optional[Iterable[str]] = None,
    with_prompt: bool = True,
) -> str:
    """
    Text to paste into an LLM chat: the full prompt followed by the items
    as a fenced JSON array, or just the array.

    Raises:
        ValueError: If there is nothing left to triage.
    """
    chosen = select_items(items, store, selected_ids)
    if not chosen:
        raise ValueError("no items to triage (all items already triaged)")

    data = json.dumps(export_payload(chosen), ensure_ascii=False, indent=2)
    if not with_prompt:
        return data

    prompt = FULL_TRIAGE_PROMPT_TEMPLATE
    idx = prompt.rfind(ITEMS_MARKER)
    return prompt[: idx + len(ITEMS_MARKER)] + "\n\n```json\n" + data + "\n```"


def export_items_to_file(
    items: Iterable[Item],
    store: TriageStore,
    out_path: Optional[str] = None,
    selected_ids: Optional[Iterable[str]] = None,
) -> str:
    """Write the export to ``out_path`` (or a fresh temp file) and return the path."""
    content = export_items_for_triage(items, store, selected_ids)
    if out_path is None:
        tmp_dir = tempfile.gettempdir()
        out_path = os.path.join(tmp_dir, "readwise-export.json")
        counter = 1
        while os.path.exists(out_path):
            out_path = os.path.join(tmp_dir, f"readwise-export-{counter}.json")
            counter += 1
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(content)
    logger.info(f"Exported triage payload to {out_path}")
    return out_path


def save_items_snapshot(items: Iterable[Item], out_path: str) -> bool:
    """Dump the simplified items exactly as the LLM would see them."""
    return save_raw_json(json.loads(serialize_items_for_llm(items)), out_path)


# ---------------------------------------------------------------------------
# Import / apply
# ---------------------------------------------------------------------------


def _filter_suggested_tags(tags: Iterable[str]) -> List[str]:
    """Drop suggested tags that only repeat an action name."""
    return [tag for tag in tags if tag.strip().lower() not in ACTIONS]


def import_triage_results(
    text: str, items: Iterable[Item], store: TriageStore
) -> ImportSummary:
    """
    Apply pasted LLM output to the working set, one element at a time.

    Elements that fail validation, or refer to items outside the working
    set, become warnings; every other element is stored with source "llm".

    Raises:
        TriageImportError: If no array is found, it is empty, or no element applies.
    """
    candidate = extract_json_array(text)
    if candidate is None:
        raise TriageImportError("no valid JSON array found in input")
    try:
        elements = json.loads(fix_trailing_commas(candidate))
    except ValueError as e:
        raise TriageImportError(f"failed to parse JSON: {e}") from e
    if not elements:
        raise TriageImportError("empty results array")

    known = {item.id for item in items}
    outcome = ImportSummary(total=len(elements), summary=parse_summary(text))

    for index, element in enumerate(elements):
        if not isinstance(element, dict):
            outcome.warnings.append(f"result {index}: not a JSON object")
            continue
        result = TriageResult.from_dict(element)
        if not result.id:
            outcome.warnings.append(f"result {index}: missing id")
            continue

        label = result.title or result.id
        if not result.triage_decision.action:
            outcome.warnings.append(f"result {index} ({label}): missing triage_decision.action")
            continue
        action = result.triage_decision.action
        priority = result.triage_decision.priority

        if action not in ACTIONS:
            outcome.warnings.append(
                f"result {index} ({label}): invalid action '{action}' "
                f"(must be one of: {', '.join(ACTIONS)})"
            )
            continue
        if priority and priority not in PRIORITIES:
            outcome.warnings.append(
                f"result {index} ({label}): invalid priority '{priority}' "
                f"(must be one of: {', '.join(PRIORITIES)})"
            )
            continue
        if result.id not in known:
            outcome.warnings.append(f"result {index}: id '{result.id}' not found in items")
            continue
        if not isinstance(result.metadata_enhancement.get("suggested_tags") or [], list):
            outcome.warnings.append(
                f"result {index} ({label}): metadata_enhancement.suggested_tags is not a list"
            )
            continue

        store.set_item(
            result.id,
            action,
            priority,
            source="llm",
            tags=_filter_suggested_tags(result.suggested_tags),
            report=result.to_dict(),
        )
        outcome.applied += 1

    if outcome.applied == 0 and outcome.warnings:
        raise TriageImportError("validation failed: " + "; ".join(outcome.warnings))

    store.save()
    logger.info(outcome.message)
    return outcome


def apply_llm_results(
    results: Iterable[TriageResult], items: Iterable[Item], store: TriageStore
) -> int:
    """Store parsed LLM decisions for items in the working set. Returns how many applied."""
    known = {item.id for item in items}
    applied = 0
    for result in results:
        if result.id not in known:
            logger.warning(f"LLM returned unknown id {result.id!r}; skipping")
            continue
        action = result.triage_decision.action
        priority = result.triage_decision.priority
        if action not in ACTIONS:
            logger.warning(f"LLM returned invalid action {action!r} for {result.id}; skipping")
            continue
        if priority and priority not in PRIORITIES:
            logger.warning(
                f"LLM returned invalid priority {priority!r} for {result.id}; skipping"
            )
            continue
        store.set_item(
            result.id,
            action,
            priority,
            source="llm",
            tags=_filter_suggested_tags(result.suggested_tags),
            report=result.to_dict(),
        )
        applied += 1
    store.save()
    return applied


def set_manual_decision(
    store: TriageStore,
    item_id: str,
    action: str,
    priority: str = "",
    tags: Optional[List[str]] = None,
) -> None:
    """
    Raises:
        ValueError: For an unknown action or priority.
    """
    if action not in ACTIONS:
        raise ValueError(f"invalid action '{action}' (must be one of: {', '.join(ACTIONS)})")
    if priority and priority not in PRIORITIES:
        raise ValueError(
            f"invalid priority '{priority}' (must be one of: {', '.join(PRIORITIES)})"
        )
    store.set_item(item_id, action, priority, source="manual", tags=tags or [])


def auto_triage(
    llm_client,
    items: Iterable[Item],
    store: TriageStore,
    batch_size: int = DEFAULT_LLM_BATCH_SIZE,
) -> int:
    """
    Triage every untriaged item with the LLM, one batch per call.

    Raises:
        LLMError, HTTPRequestError, TriageParseError: From the first failing batch;
        batches already applied stay stored.
    """
    pending = select_items(items, store)
    if not pending:
        logger.info("Nothing to triage: every item already has a decision")
        return 0

    applied = 0
    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        logger.info(
            f"Triaging items {start + 1}-{start + len(batch)} of {len(pending)} with the LLM"
        )
        results = llm_client.triage_items(serialize_items_for_llm(batch))
        applied += apply_llm_results(results, batch, store)
    return applied


# ---------------------------------------------------------------------------
# Decisions -> Reader updates
# ---------------------------------------------------------------------------


def location_for_action(action: str, fetch_location: str = "new") -> str:
    if action == "later":
        return "later"
    if action in ("archive", "delete"):
        return "archive"
    if action in ("read_now", "needs_review") and fetch_location == "feed":
        return "new"
    return ""


def build_updates(
    items: Iterable[Item],
    store: TriageStore,
    fetch_location: str = "new",
    selected_ids: Optional[Iterable[str]] = None,
) -> List[UpdateRequest]:
    """One UpdateRequest per item that has a stored decision."""
    wanted = set(selected_ids) if selected_ids else None
    updates = []
    for item in items:
        if wanted is not None and item.id not in wanted:
            continue
        entry = store.get_item(item.id)
        if entry is None or not entry.action:
            continue

        tags: List[str] = []
        for tag in list(item.tags) + (
            [f"priority:{entry.priority}"] if entry.priority else []
        ) + list(entry.tags):
            if tag not in tags:
                tags.append(tag)

        updates.append(
            UpdateRequest(
                document_id=item.id,
                location=location_for_action(entry.action, fetch_location),
                tags=tags,
            )
        )
    return updates

