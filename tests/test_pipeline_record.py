"""Tests for memo records and entry formatting."""

import json
import re
from datetime import datetime

import pytest

from voicememo.errors import ClassificationError, FailureKind
from voicememo.pipeline.record import (
    Record,
    RecordType,
    extract_json,
    format_entry,
    format_timestamp,
    parse_record,
)


class TestParseRecord:
    """Tests for parse_record function."""

    def test_plain(self):
        """Test a plain record."""
        record = parse_record('{"type": "plain", "content": "buy milk"}')
        assert record == Record(type=RecordType.PLAIN, content="buy milk")

    def test_dailynote(self):
        """Test a daily note record."""
        record = parse_record('{"type": "dailynote", "content": "- [ ] call mom"}')
        assert record.type == RecordType.DAILY_NOTE
        assert record.content == "- [ ] call mom"

    def test_code_fenced_reply(self):
        """Test JSON wrapped in a markdown fence is accepted."""
        reply = '```json\n{"type": "plain", "content": "hello"}\n```'
        assert parse_record(reply).content == "hello"

    def test_unicode_content(self):
        """Test non-ASCII content survives parsing."""
        record = parse_record('{"type": "plain", "content": "우유 사기"}')
        assert record.content == "우유 사기"

    @pytest.mark.parametrize("reply", [
        "",
        "   ",
        "not json at all",
        '{"type": "plain"}',
        '{"content": "x"}',
        '{"type": "todo", "content": "x"}',
        '{"type": "plain", "content": "x", "priority": 1}',
        '{"type": "plain", "content": 5}',
        '["plain", "x"]',
        '{"type": "plain", "content": "x"',
    ])
    def test_rejects_malformed(self, reply):
        """Test anything but exactly {type, content} is a classification failure."""
        with pytest.raises(ClassificationError) as exc_info:
            parse_record(reply)
        assert exc_info.value.kind == FailureKind.CLASSIFICATION

    def test_record_is_frozen(self):
        """Test records cannot be modified after classification."""
        record = Record(type=RecordType.PLAIN, content="x")
        with pytest.raises(Exception):
            record.content = "y"


class TestExtractJson:
    """Tests for extract_json function."""

    def test_extracts_outermost_object(self):
        """Test surrounding prose is dropped."""
        assert extract_json('Sure! {"a": {"b": 1}} done') == '{"a": {"b": 1}}'

    def test_no_object(self):
        """Test text without braces is returned unchanged."""
        assert extract_json("nothing") == "nothing"


class TestFormatEntry:
    """Tests for the persisted markdown entry."""

    @pytest.fixture
    def timestamp(self):
        return datetime(2024, 5, 1, 9, 30, 15)

    def test_exact_layout(self, timestamp):
        """Test the entry layout byte for byte."""
        entry = format_entry(Record(type=RecordType.PLAIN, content="buy milk"), timestamp)
        assert entry == (
            "\n\n###### 2024-05-01 09:30:15\n\n"
            "```json\n"
            "{\n"
            '    "type": "plain",\n'
            '    "content": "buy milk"\n'
            "}\n"
            "```\n"
        )

    def test_timestamp_format(self, timestamp):
        """Test local timestamps use zero-padded fields."""
        assert format_timestamp(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"
        assert re.match(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$", format_timestamp(timestamp))

    def test_quotes_are_escaped(self, timestamp):
        """Test embedded quotes keep the JSON block valid."""
        record = Record(type=RecordType.DAILY_NOTE, content='say "hi"\nthen leave')
        entry = format_entry(record, timestamp)

        body = entry.split("```json\n", 1)[1].rsplit("```", 1)[0]
        assert json.loads(body) == {"type": "dailynote", "content": 'say "hi"\nthen leave'}

    def test_unicode_is_not_escaped(self, timestamp):
        """Test non-ASCII content is written as-is."""
        entry = format_entry(Record(type=RecordType.PLAIN, content="우유"), timestamp)
        assert '"content": "우유"' in entry

    def test_entry_starts_with_blank_line(self, timestamp):
        """Test entries can be appended directly to existing content."""
        entry = format_entry(Record(type=RecordType.PLAIN, content="x"), timestamp)
        assert entry.startswith("\n\n###### ")
        assert entry.endswith("```\n")
