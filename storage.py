import os
import json
import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Any, Optional

from models import TriageEntry

logger = logging.getLogger(__name__)

STORE_VERSION = "2"
LEGACY_STORE_FILENAME = "triage_store.json"
BACKUP_SUFFIX = ".bak"


class TriageStoreError(Exception):
    """The store file exists but cannot be read."""


def ensure_dir(path: str):
    if path:
        Path(path).mkdir(parents=True, exist_ok=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def atomic_write_text(out_path: str, content: str) -> None:
    """Write via a temp file in the same directory and rename it into place."""
    directory = os.path.dirname(os.path.abspath(out_path))
    ensure_dir(directory)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, out_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def save_raw_json(data: Any, out_path: str) -> bool:
    try:
        atomic_write_text(out_path, json.dumps(data, ensure_ascii=False, indent=2) + "\n")
        return True
    except OSError as e:
        logger.error(f"Error saving JSON to {out_path}: {e}")
        return False


def _legacy_entries(data: Any) -> Dict[str, Dict[str, Any]]:
    """
    Entries from a legacy file: either ``{"version", "updated_at", "items": {...}}``
    or a bare ``{id: entry}`` mapping.
    """
    if not isinstance(data, dict):
        raise TriageStoreError("legacy triage store is not a JSON object")
    items = data.get("items") if "items" in data else {
        key: value for key, value in data.items() if isinstance(value, dict)
    }
    if not isinstance(items, dict):
        raise TriageStoreError("legacy triage store has no items mapping")
    return items


def _convert_legacy_entry(raw: Dict[str, Any]) -> TriageEntry:
    tags = raw.get("tags") or []
    return TriageEntry(
        action=str(raw.get("action") or ""),
        priority=str(raw.get("priority") or ""),
        tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
        triaged_at=str(raw.get("triaged_at") or "") or _now(),
        source=str(raw.get("source") or "") or "manual",
        report=None,
    )


class TriageStore:
    """
    Durable id -> TriageEntry table backed by an indented JSON file.

    The file looks like::

        {"version": "2", "updated_at": "...",
         "items": {"<id>": {"action", "priority", "tags", "triaged_at", "source", "report"?}}}

    Files written by older versions (``triage_store.json`` next to the store,
    or a version "1" file at the store path) are converted on load and the
    old content is kept with a ``.bak`` suffix. The legacy file at the store
    path is only replaced once its backup exists and the converted table has
    been written.
    """

    def __init__(self, path: str, legacy_path: Optional[str] = None, autosave: bool = True):
        self.path = path
        self.legacy_path = legacy_path or os.path.join(
            os.path.dirname(os.path.abspath(path)), LEGACY_STORE_FILENAME
        )
        self.autosave = autosave
        self.version = STORE_VERSION
        self.updated_at = ""
        self._items: Dict[str, TriageEntry] = {}
        self._dirty = False

    # -- loading -----------------------------------------------------------

    @classmethod
    def load(cls, path: str, legacy_path: Optional[str] = None, autosave: bool = True) -> "TriageStore":
        store = cls(path, legacy_path=legacy_path, autosave=autosave)
        store._load()
        return store

    def _read_json(self, path: str) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise TriageStoreError(f"cannot read triage store {path}: {e}") from e

    def _load(self) -> None:
        if os.path.exists(self.path):
            data = self._read_json(self.path)
            if isinstance(data, dict) and str(data.get("version")) == STORE_VERSION:
                self._load_current(data)
            else:
                self._migrate(data, self.path)
        elif os.path.exists(self.legacy_path):
            self._migrate(self._read_json(self.legacy_path), self.legacy_path)
        else:
            logger.debug(f"No triage store at {self.path}; starting empty")

    def _load_current(self, data: Dict[str, Any]) -> None:
        items = data.get("items") or {}
        if not isinstance(items, dict):
            raise TriageStoreError(f"triage store {self.path} has no items mapping")
        self.updated_at = str(data.get("updated_at") or "")
        self._items = {
            str(item_id): TriageEntry.from_dict(entry)
            for item_id, entry in items.items()
            if isinstance(entry, dict)
        }
        logger.debug(f"Loaded {len(self._items)} triage entries from {self.path}")

    def _migrate(self, data: Any, source_path: str) -> None:
        entries = _legacy_entries(data)
        self._items = {
            str(item_id): _convert_legacy_entry(raw)
            for item_id, raw in entries.items()
            if isinstance(raw, dict)
        }
        logger.info(f"Migrating {len(self._items)} triage entries from {source_path}")

        backup_path = source_path + BACKUP_SUFFIX
        if source_path == self.path:
            # The original stays in place until the converted file replaces it.
            try:
                shutil.copy2(source_path, backup_path)
            except OSError as e:
                raise TriageStoreError(
                    f"cannot back up legacy triage store {source_path}: {e}"
                ) from e
            logger.info(f"Legacy triage store copied to {backup_path}")
            self._dirty = True
            self.save()
        else:
            self._dirty = True
            self.save()
            self._backup(source_path, backup_path)

    def _backup(self, source_path: str, backup_path: str) -> None:
        try:
            os.replace(source_path, backup_path)
            logger.info(f"Legacy triage store moved to {backup_path}")
        except OSError as e:
            logger.warning(f"Could not rename legacy triage store {source_path}: {e}")

    # -- lookups -------------------------------------------------------------

    def has_triaged(self, item_id: str) -> bool:
        return item_id in self._items

    def get_item(self, item_id: str) -> Optional[TriageEntry]:
        entry = self._items.get(item_id)
        if entry is None:
            return None
        return TriageEntry.from_dict(entry.to_dict())

    def get_untriaged_ids(self, candidate_ids: List[str]) -> List[str]:
        return [item_id for item_id in candidate_ids if item_id not in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        return self.has_triaged(item_id)

    # -- mutation ------------------------------------------------------------

    def set_item(
        self,
        item_id: str,
        action: str,
        priority: str = "",
        source: str = "manual",
        tags: Optional[List[str]] = None,
        report: Optional[Dict[str, Any]] = None,
    ) -> TriageEntry:
        """Replace whatever is stored for ``item_id`` with a fresh entry."""
        entry = TriageEntry(
            action=action,
            priority=priority or "",
            tags=list(tags or []),
            triaged_at=_now(),
            source=source,
            report=dict(report) if report is not None else None,
        )
        self._items[item_id] = entry
        self._dirty = True
        if self.autosave:
            self.save()
        return entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "updated_at": self.updated_at,
            "items": {item_id: entry.to_dict() for item_id, entry in self._items.items()},
        }

    def save(self) -> None:
        """
        Persist the table. Without pending changes an existing file is left
        untouched, so repeated calls are harmless.
        """
        if not self._dirty and os.path.exists(self.path):
            return
        if self._dirty or not self.updated_at:
            self.updated_at = _now()
        content = json.dumps(self.to_dict(), ensure_ascii=False, indent=2) + "\n"
        try:
            atomic_write_text(self.path, content)
        except OSError as e:
            raise TriageStoreError(f"cannot write triage store {self.path}: {e}") from e
        self._dirty = False
        logger.debug(f"Saved {len(self._items)} triage entries to {self.path}")

    def close(self) -> None:
        self.save()

    def __enter__(self) -> "TriageStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
