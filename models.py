from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

ACTIONS = ("read_now", "later", "archive", "delete", "needs_review")
PRIORITIES = ("high", "medium", "low")


@dataclass
class Item:
    id: str
    title: str = ""
    url: str = ""
    reader_url: str = ""
    author: str = ""
    source: str = ""
    site_name: str = ""
    category: str = ""  # article|feed|tweet|pdf|video
    word_count: int = 0
    reading_time: str = ""
    published_date: Optional[datetime] = None
    saved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    first_opened_at: Optional[datetime] = None
    last_opened_at: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)
    summary: str = ""
    notes: str = ""
    reading_progress: float = 0.0
    original: Dict[str, Any] = field(
        default_factory=dict
    )  # Preserve all original fields for auditing


@dataclass
class UpdateRequest:
    document_id: str
    location: str = ""
    tags: List[str] = field(default_factory=list)
    notes: str = ""

    def to_payload(self) -> Dict[str, Any]:
        """Body for the update endpoint. The id travels in the URL only."""
        payload: Dict[str, Any] = {}
        if self.location:
            payload["location"] = self.location
        if self.tags:
            payload["tags"] = list(self.tags)
        if self.notes:
            payload["notes"] = self.notes
        return payload


@dataclass
class BatchUpdateResult:
    total: int = 0
    success: int = 0
    failed: int = 0
    errors: List[Exception] = field(default_factory=list)


@dataclass
class BatchUpdateProgress:
    current: int
    total: int
    item_id: str
    success: bool


@dataclass
class TriageDecision:
    action: str = ""
    priority: str = ""
    reason: str = ""


@dataclass
class TriageResult:
    """One element of an LLM triage response.

    Only ``id``, ``title`` and ``triage_decision.action`` are required; the
    enrichment sections are kept as plain dicts and the element as a whole is
    preserved verbatim in ``raw``.
    """

    id: str
    title: str
    url: str = ""
    triage_decision: TriageDecision = field(default_factory=TriageDecision)
    content_analysis: Dict[str, Any] = field(default_factory=dict)
    credibility_check: Dict[str, Any] = field(default_factory=dict)
    reading_guide: Dict[str, Any] = field(default_factory=dict)
    metadata_enhancement: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriageResult":
        def get_str(mapping, key):
            val = mapping.get(key)
            return str(val) if val is not None else ""

        def get_dict(key):
            val = data.get(key)
            return val if isinstance(val, dict) else {}

        decision = get_dict("triage_decision")
        return cls(
            id=get_str(data, "id"),
            title=get_str(data, "title"),
            url=get_str(data, "url"),
            triage_decision=TriageDecision(
                action=get_str(decision, "action"),
                priority=get_str(decision, "priority"),
                reason=get_str(decision, "reason"),
            ),
            content_analysis=get_dict("content_analysis"),
            credibility_check=get_dict("credibility_check"),
            reading_guide=get_dict("reading_guide"),
            metadata_enhancement=get_dict("metadata_enhancement"),
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.raw:
            return dict(self.raw)
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "triage_decision": {
                "action": self.triage_decision.action,
                "priority": self.triage_decision.priority,
                "reason": self.triage_decision.reason,
            },
            "content_analysis": self.content_analysis,
            "credibility_check": self.credibility_check,
            "reading_guide": self.reading_guide,
            "metadata_enhancement": self.metadata_enhancement,
        }

    @property
    def suggested_tags(self) -> List[str]:
        """Non-blank string tags; anything but a list yields []."""
        tags = self.metadata_enhancement.get("suggested_tags")
        if not isinstance(tags, list):
            return []
        return [tag for tag in tags if isinstance(tag, str) and tag.strip()]


@dataclass
class TriageEntry:
    action: str
    priority: str = ""
    tags: List[str] = field(default_factory=list)
    triaged_at: str = ""  # RFC 3339 string
    source: str = "manual"
    report: Optional[Dict[str, Any]] = None  # full LLM element, None for manual entries

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "action": self.action,
            "priority": self.priority,
            "tags": list(self.tags),
            "triaged_at": self.triaged_at,
            "source": self.source,
        }
        if self.report is not None:
            data["report"] = self.report
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriageEntry":
        report = data.get("report")
        return cls(
            action=str(data.get("action") or ""),
            priority=str(data.get("priority") or ""),
            tags=[str(tag) for tag in (data.get("tags") or [])],
            triaged_at=str(data.get("triaged_at") or ""),
            source=str(data.get("source") or "manual"),
            report=report if isinstance(report, dict) else None,
        )
