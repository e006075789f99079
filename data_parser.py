import json
from typing import Dict, Any, List, Optional, Iterable
from datetime import datetime, timezone
from models import Item

# Tried in order after the ISO-8601 / RFC 3339 parse
_FALLBACK_TIME_FORMATS = ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Normalize a Reader timestamp into an aware UTC-or-offset datetime.
    Accepts RFC 3339 (with ``Z`` or an offset, fractional seconds allowed),
    ``YYYY-MM-DDTHH:MM:SS`` and ``YYYY-MM-DD``. Returns None when nothing fits.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        dt = datetime.fromisoformat(iso_text)
    except ValueError:
        dt = None
        for fmt in _FALLBACK_TIME_FORMATS:
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """RFC 3339 with second precision, ``Z`` for UTC."""
    if dt is None:
        return None
    text = dt.isoformat(timespec="seconds")
    return text.replace("+00:00", "Z")


def normalize_tags(value: Any) -> List[str]:
    """
    Reader returns tags either as a list of names or as an object keyed by
    tag name. Both become a list of names; anything else becomes [].
    """
    if isinstance(value, list):
        return [str(tag) for tag in value if tag is not None]
    if isinstance(value, dict):
        return [str(key) for key in value.keys()]
    return []


def parse_reader_item(raw: Dict[str, Any]) -> Item:
    """
    Parse a raw Reader API document dict into an Item dataclass.
    Handles missing/null fields, type validation, and timestamp normalization.
    """

    def get_str(field):
        val = raw.get(field)
        return str(val) if val is not None else ""

    def get_int(field):
        val = raw.get(field)
        try:
            return max(int(val), 0) if val is not None else 0
        except (ValueError, TypeError):
            return 0

    def get_float(field):
        val = raw.get(field)
        try:
            return min(max(float(val), 0.0), 1.0) if val is not None else 0.0
        except (ValueError, TypeError):
            return 0.0

    return Item(
        id=get_str("id"),
        title=get_str("title"),
        # Reader calls the original article "source_url" and its own page "url"
        url=get_str("source_url"),
        reader_url=get_str("url"),
        author=get_str("author"),
        source=get_str("source"),
        site_name=get_str("site_name"),
        category=get_str("category"),
        word_count=get_int("word_count"),
        reading_time=get_str("reading_time"),
        published_date=parse_timestamp(raw.get("published_date")),
        saved_at=parse_timestamp(raw.get("saved_at")),
        created_at=parse_timestamp(raw.get("created_at")),
        updated_at=parse_timestamp(raw.get("updated_at")),
        first_opened_at=parse_timestamp(raw.get("first_opened_at")),
        last_opened_at=parse_timestamp(raw.get("last_opened_at")),
        tags=normalize_tags(raw.get("tags")),
        summary=get_str("summary"),
        notes=get_str("notes"),
        reading_progress=get_float("reading_progress"),
        original=raw.copy(),
    )


def simplify_item(item: Item) -> Dict[str, Any]:
    """Reduced view of an item for LLM processing."""
    simplified = {
        "id": item.id,
        "url": item.url,
        "reader_url": item.reader_url,
        "title": item.title,
        "author": item.author,
        "source": item.source,
        "site_name": item.site_name,
        "category": item.category,
        "word_count": item.word_count,
        "reading_time": item.reading_time,
        "saved_at": format_timestamp(item.saved_at),
        "created_at": format_timestamp(item.created_at),
        "updated_at": format_timestamp(item.updated_at),
        "tags": list(item.tags),
        "summary": item.summary,
        "notes": item.notes,
        "reading_progress": item.reading_progress,
    }
    if item.published_date is not None:
        simplified["published_date"] = format_timestamp(item.published_date)
    if item.first_opened_at is not None:
        simplified["first_opened_at"] = format_timestamp(item.first_opened_at)
    if item.last_opened_at is not None:
        simplified["last_opened_at"] = format_timestamp(item.last_opened_at)
    return simplified


def serialize_items_for_llm(items: Iterable[Item]) -> str:
    return json.dumps(
        [simplify_item(item) for item in items], ensure_ascii=False, indent=2
    )
