"""Prompt templates for LLM triage. Each has exactly one ``{items_json}`` slot."""

ITEMS_PLACEHOLDER = "{items_json}"

ITEMS_MARKER = "**Inbox items to process:**"

SYSTEM_PROMPT = (
    "You are a helpful assistant that analyzes reading materials and provides "
    "structured triage recommendations. Return ONLY valid JSON."
)

_READING_GOALS = """**My Reading Goals:**
- Priority: Tool usage guides, productivity tips, actionable methodologies
- Secondary: Industry insights, technical deep-dives
- Usually ignore: Pure opinion pieces, marketing content, outdated info"""

# Lean variant: only the fields the sync path consumes.
AUTO_TRIAGE_PROMPT_TEMPLATE = (
    """You are my personal reading assistant. I will give you a batch of Readwise Reader inbox item metadata (JSON format). Classify each item with a triage decision.

---

"""
    + _READING_GOALS
    + """

---

**Output the following structure for each item (JSON format):**

{
  "id": "item id",
  "title": "title",
  "url": "url",
  "triage_decision": {
    "action": "delete|archive|later|read_now|needs_review",
    "priority": "high|medium|low",
    "reason": "why this classification (1-2 sentences)"
  },
  "metadata_enhancement": {
    "suggested_tags": ["tag1", "tag2"]
  }
}

---

**Special Rules:**
1. **action = "read_now"**: Only for items that are highly actionable, from credible sources, and solve problems I might currently face.
2. **action = "later"**: Valuable but not urgent, or requires a full time block.
3. **action = "archive"**: Might be useful later but does not need deep reading now.
4. **action = "delete"**: Marketing content, duplicates, outdated info, clearly irrelevant.
5. **action = "needs_review"**: When you CANNOT confidently classify an item (paywalled, ambiguous, insufficient context). Do NOT guess, flag it for human review.

---

**Output Format:**
Return ONLY a JSON array, each element is the above format. No additional text, commentary, or summaries outside the JSON.

---

"""
    + ITEMS_MARKER
    + """

"""
    + ITEMS_PLACEHOLDER
)

# Full variant: adds the enrichment sections kept verbatim in the store.
FULL_TRIAGE_PROMPT_TEMPLATE = (
    """You are my personal reading assistant. I will give you a batch of Readwise Reader inbox item metadata (JSON format), please generate a complete "Triage Decision Card" for each item.

---

"""
    + _READING_GOALS
    + """

---

**Output the following structure for each item (JSON format):**

{
  "id": "item id",
  "title": "title",
  "url": "url",
  "triage_decision": {
    "action": "delete|archive|later|read_now|needs_review",
    "priority": "high|medium|low",
    "reason": "why this classification (2-3 sentences)"
  },
  "content_analysis": {
    "type": "tutorial|tool_doc|opinion|analysis|news|research|other",
    "key_topics": ["topic1", "topic2"],
    "effort_required": "5 mins skim|15 mins focused|1 hour deep",
    "best_read_when": "When to read it"
  },
  "credibility_check": {
    "author_background": "Author/source background (if available)",
    "evidence_type": "first_hand|data_backed|opinion_based|aggregate",
    "recency": "Publication date + whether still relevant",
    "risk_flags": []
  },
  "reading_guide": {
    "why_valuable": "Value to me (specific scenarios)",
    "read_for": ["Specific question to answer while reading"],
    "skip_sections": "Sections to skip (if any)",
    "action_items": ["Concrete action to take after reading"],
    "prerequisites": ["Concepts/tools to understand in advance"]
  },
  "metadata_enhancement": {
    "suggested_tags": ["tag1", "tag2"],
    "related_reads": ["Specific follow-up reading"],
    "save_as": "How to archive it"
  }
}

---

**Special Rules:**
1. **action = "read_now"**: Only for highly actionable items from credible sources.
2. **action = "later"**: Valuable but not urgent, or requires a full time block.
3. **action = "archive"**: Might be useful later but does not need deep reading now.
4. **action = "delete"**: Marketing content, duplicates, outdated info, clearly irrelevant.
5. **action = "needs_review"**: When you cannot confidently classify an item. Do NOT guess, explain in the reason field.
6. "read_for" must be specific questions, and "action_items" must be actionable.

---

**Output Format:**
Return ONLY a JSON array, each element is the above format. No additional text, commentary, or summaries outside the JSON.

---

"""
    + ITEMS_MARKER
    + """

"""
    + ITEMS_PLACEHOLDER
)


def render_prompt(template: str, items_json: str) -> str:
    return template.replace(ITEMS_PLACEHOLDER, items_json, 1)
