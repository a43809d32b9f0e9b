"""
Unit tests for header parsing and list-view metadata extraction.
"""

import pytest

from switchboard.modules.gmail.headers import (
    extract_header,
    extract_thread_metadata,
    parse_date,
    parse_from,
)


class TestExtractHeader:

    def test_case_insensitive(self):
        headers = [{"name": "subject", "value": "Quarterly report"}]
        assert extract_header(headers, "Subject") == "Quarterly report"

    def test_missing(self):
        assert extract_header([{"name": "To", "value": "x"}], "Subject") == ""
        assert extract_header(None, "Subject") == ""


class TestParseFrom:

    @pytest.mark.parametrize("header,name,email", [
        ("John Doe <john@example.com>", "John Doe", "john@example.com"),
        ('"Doe, John" <john@example.com>', "Doe, John", "john@example.com"),
        ("<john@example.com>", "", "john@example.com"),
        ("john@example.com", "", "john@example.com"),
        ("", "", ""),
    ])
    def test_forms(self, header, name, email):
        parsed = parse_from(header)
        assert (parsed.name, parsed.email) == (name, email)


class TestParseDate:

    def test_rfc2822_to_iso(self):
        assert parse_date("Mon, 15 Jan 2024 10:30:00 +0000") == "2024-01-15T10:30:00.000Z"

    def test_offset_converted_to_utc(self):
        assert parse_date("Mon, 15 Jan 2024 10:30:00 -0500") == "2024-01-15T15:30:00.000Z"

    def test_unparseable_kept_verbatim(self):
        assert parse_date("sometime last week") == "sometime last week"

    def test_empty(self):
        assert parse_date("") == ""


class TestExtractThreadMetadata:

    def test_first_and_last_message_roles(self):
        thread = {
            "id": "t1",
            "messages": [
                {
                    "id": "m1",
                    "snippet": "original",
                    "labelIds": ["INBOX"],
                    "payload": {"headers": [
                        {"name": "Subject", "value": "Lunch?"},
                        {"name": "From", "value": "Alice <alice@example.com>"},
                        {"name": "To", "value": "bob@example.com"},
                        {"name": "Date", "value": "Mon, 15 Jan 2024 10:30:00 +0000"},
                    ]},
                },
                {
                    "id": "m2",
                    "snippet": "sounds good",
                    "labelIds": ["INBOX", "UNREAD"],
                    "payload": {"headers": [
                        {"name": "Subject", "value": "Re: Lunch?"},
                        {"name": "From", "value": "Bob <bob@example.com>"},
                        {"name": "Date", "value": "Tue, 16 Jan 2024 08:00:00 +0000"},
                    ]},
                },
            ],
        }

        metadata = extract_thread_metadata(thread)

        assert metadata.id == "t1"
        assert metadata.subject == "Lunch?"
        assert metadata.from_.email == "alice@example.com"
        assert metadata.to == "bob@example.com"
        assert metadata.date == "2024-01-16T08:00:00.000Z"
        assert metadata.snippet == "sounds good"
        assert metadata.label_ids == ["INBOX", "UNREAD"]
        assert metadata.message_count == 2
        assert metadata.is_unread is True

    def test_missing_subject_placeholder(self):
        metadata = extract_thread_metadata({"id": "t1", "messages": [{"payload": {"headers": []}}]})

        assert metadata.subject == "(no subject)"

    def test_wire_shape_is_camel_case(self, thread_resource):
        dumped = extract_thread_metadata(thread_resource("t9")).model_dump(by_alias=True)

        assert dumped["from"] == {"name": "Alice", "email": "alice@example.com"}
        assert dumped["labelIds"] == ["INBOX"]
        assert dumped["messageCount"] == 1
