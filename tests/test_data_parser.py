import json
import unittest
from datetime import datetime, timedelta, timezone

from data_parser import (
    format_timestamp,
    normalize_tags,
    parse_reader_item,
    parse_timestamp,
    serialize_items_for_llm,
    simplify_item,
)


class TestParseTimestamp(unittest.TestCase):
    def test_rfc3339_with_z(self):
        dt = parse_timestamp("2024-01-15T10:30:00Z")
        self.assertEqual(dt, datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc))

    def test_rfc3339_with_fraction_and_offset(self):
        dt = parse_timestamp("2024-01-15T10:30:00.123456+02:00")
        self.assertEqual(dt.utcoffset(), timedelta(hours=2))
        self.assertEqual(dt.microsecond, 123456)

    def test_naive_datetime_is_utc(self):
        dt = parse_timestamp("2024-01-15T10:30:00")
        self.assertEqual(dt.tzinfo, timezone.utc)

    def test_date_only(self):
        dt = parse_timestamp("2024-01-15")
        self.assertEqual(dt, datetime(2024, 1, 15, tzinfo=timezone.utc))

    def test_invalid_values(self):
        self.assertIsNone(parse_timestamp("not_a_timestamp"))
        self.assertIsNone(parse_timestamp(""))
        self.assertIsNone(parse_timestamp(None))
        self.assertIsNone(parse_timestamp(1700000000))

    def test_format_timestamp(self):
        dt = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        self.assertEqual(format_timestamp(dt), "2024-01-15T10:30:00Z")
        self.assertIsNone(format_timestamp(None))


class TestNormalizeTags(unittest.TestCase):
    def test_list_of_names(self):
        self.assertEqual(normalize_tags(["ai", "python"]), ["ai", "python"])

    def test_object_keyed_by_name(self):
        tags = {"ai": {"name": "ai"}, "python": {"name": "python"}}
        self.assertEqual(normalize_tags(tags), ["ai", "python"])

    def test_other_shapes(self):
        self.assertEqual(normalize_tags(None), [])
        self.assertEqual(normalize_tags("ai"), [])


class TestParseReaderItem(unittest.TestCase):
    def test_extracts_fields(self):
        raw = {
            "id": "01abc",
            "title": "Example Title",
            "url": "https://read.readwise.io/read/01abc",
            "source_url": "https://example.com/post",
            "author": "Ada",
            "site_name": "Example",
            "category": "article",
            "word_count": 1200,
            "reading_time": "5 mins",
            "saved_at": "2024-01-15T10:30:00Z",
            "published_date": "2024-01-14",
            "tags": {"ai": {}},
            "summary": "Short summary",
            "reading_progress": 0.25,
        }
        item = parse_reader_item(raw)
        self.assertEqual(item.id, "01abc")
        self.assertEqual(item.url, "https://example.com/post")
        self.assertEqual(item.reader_url, "https://read.readwise.io/read/01abc")
        self.assertEqual(item.word_count, 1200)
        self.assertEqual(item.tags, ["ai"])
        self.assertEqual(item.saved_at, datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc))
        self.assertEqual(item.published_date, datetime(2024, 1, 14, tzinfo=timezone.utc))
        self.assertEqual(item.reading_progress, 0.25)
        self.assertEqual(item.original["source_url"], "https://example.com/post")

    def test_handles_missing_and_null_fields(self):
        item = parse_reader_item({"id": "x", "title": None, "tags": None, "word_count": None})
        self.assertEqual(item.title, "")
        self.assertEqual(item.tags, [])
        self.assertEqual(item.word_count, 0)
        self.assertIsNone(item.saved_at)

    def test_clamps_numbers(self):
        item = parse_reader_item({"id": "x", "word_count": -5, "reading_progress": 3})
        self.assertEqual(item.word_count, 0)
        self.assertEqual(item.reading_progress, 1.0)

    def test_handles_invalid_numbers(self):
        item = parse_reader_item({"id": "x", "word_count": "lots", "reading_progress": "half"})
        self.assertEqual(item.word_count, 0)
        self.assertEqual(item.reading_progress, 0.0)


class TestSerializeForLLM(unittest.TestCase):
    def test_simplify_omits_absent_optional_dates(self):
        item = parse_reader_item({"id": "x", "saved_at": "2024-01-15T10:30:00Z"})
        simplified = simplify_item(item)
        self.assertEqual(simplified["saved_at"], "2024-01-15T10:30:00Z")
        self.assertNotIn("published_date", simplified)
        self.assertNotIn("original", simplified)

    def test_serialize_items(self):
        items = [parse_reader_item({"id": "1"}), parse_reader_item({"id": "2"})]
        data = json.loads(serialize_items_for_llm(items))
        self.assertEqual([entry["id"] for entry in data], ["1", "2"])


if __name__ == "__main__":
    unittest.main()
