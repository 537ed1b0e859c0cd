"""Tests for response, request list and history rendering."""

import datetime

from terzi.output import (
    format_body,
    format_history,
    format_request_details,
    format_request_list,
    format_response,
    format_stats,
)
from terzi.request import RequestBuilder
from terzi.storage import HistoryEntry, HistoryStats
from tests.conftest import make_response

# ── Bodies ───────────────────────────────────────────────────────────────


class TestFormatBody:
    def test_pretty_json(self):
        assert format_body('{"a":1}') == '{\n  "a": 1\n}'

    def test_compact_json(self):
        assert format_body('{"a": 1}', pretty=False) == '{"a": 1}'

    def test_yaml(self):
        assert format_body('{"name": "John", "tags": ["x"]}', "yaml") == "name: John\ntags:\n- x"

    def test_table_from_list(self):
        table = format_body('[{"id": 1, "name": "A"}, {"id": 2}]', "table")
        lines = table.splitlines()
        assert lines[0].split() == ["id", "name"]
        assert lines[2].split() == ["1", "A"]
        assert lines[3].split() == ["2"]

    def test_table_from_object(self):
        table = format_body('{"id": 1}', "table")
        assert table.splitlines()[0].split() == ["Key", "Value"]

    def test_table_falls_back_for_scalars(self):
        assert format_body("42", "table") == "42"

    def test_raw_untouched(self):
        assert format_body('{"a":1}', "raw") == '{"a":1}'

    def test_non_json_untouched(self):
        assert format_body("<html></html>", "json") == "<html></html>"


# ── Responses ────────────────────────────────────────────────────────────


class TestFormatResponse:
    def test_sections(self):
        text = format_response(make_response(status=200, body={"status": "ok"}))
        assert "STATUS: 200" in text
        assert "TIME: 250ms" in text
        assert "SIZE: 16 B" in text
        assert "BODY:" in text
        assert '"status": "ok"' in text
        assert "HEADERS:" not in text

    def test_headers_shown(self):
        text = format_response(make_response(headers={"X-Req": "1"}), show_headers=True)
        assert "HEADERS:" in text
        assert "  X-Req: 1" in text

    def test_timing_and_size_hidden(self):
        text = format_response(make_response(body="x"), show_timing=False, show_size=False)
        assert "TIME:" not in text
        assert "SIZE:" not in text

    def test_raw_returns_body_only(self):
        assert format_response(make_response(body="plain"), output_format="raw") == "plain"

    def test_truncation(self):
        text = format_response(make_response(body="a" * 50), max_body_length=10)
        assert "a" * 10 + "\n... (40 more characters truncated)" in text

    def test_color(self):
        text = format_response(make_response(status=500), color=True)
        assert "\x1b[" in text
        assert "STATUS: 500" in text

    def test_empty_body(self):
        assert "BODY:" not in format_response(make_response(status=204))


# ── Requests ─────────────────────────────────────────────────────────────


class TestRequestViews:
    def test_empty_list(self):
        assert format_request_list([]).startswith("No saved requests found.")

    def test_list_rows(self):
        req = RequestBuilder("https://api.example.com/users", "post").name("create").build()
        text = format_request_list([req])
        assert text.splitlines()[0].split() == ["Name", "Method", "URL", "Created"]
        assert "create" in text
        assert "POST" in text

    def test_details_masks_secrets(self):
        req = (
            RequestBuilder("https://api.example.com/login", "POST")
            .name("login")
            .auth("bearer:abcdef123456")
            .json_body('{"user": "john", "password": "hunter22"}')
            .tag("auth")
            .timeout(10)
            .build()
        )
        text = format_request_details(req)
        assert "Request: login" in text
        assert "Authorization: Be****56" in text
        assert "abcdef123456" not in text
        assert '"password": "hu****22"' in text
        assert "Tags: auth" in text
        assert "Timeout: 10s" in text


# ── History and stats ────────────────────────────────────────────────────


class TestHistoryViews:
    def test_empty(self):
        assert format_history([]) == "No request history found. Make some requests first!"

    def test_rows(self):
        ts = datetime.datetime(2024, 5, 1, 12, 30, tzinfo=datetime.timezone.utc)
        entries = [
            HistoryEntry(
                method="GET",
                url="https://a.example.com",
                timestamp=ts,
                response_status=200,
                duration_ms=120,
                response_size=2048,
            ),
            HistoryEntry(method="POST", url="https://b.example.com", timestamp=ts, error_message="x"),
        ]
        lines = format_history(entries).splitlines()
        assert lines[2].split() == [
            "2024-05-01",
            "12:30:00",
            "GET",
            "https://a.example.com",
            "200",
            "120ms",
            "2.0",
            "KB",
        ]
        assert "ERROR" in lines[3]

    def test_stats(self):
        stats = HistoryStats(
            total_requests=3,
            successful_requests=2,
            failed_requests=1,
            total_duration_ms=300,
            average_duration_ms=150,
            min_duration_ms=100,
            max_duration_ms=200,
        )
        text = format_stats(stats)
        assert "Total requests: 3" in text
        assert "Successful (2xx): 2" in text
        assert "Failed (no response): 1" in text
        assert "avg 150ms, min 100ms, max 200ms" in text

    def test_stats_without_durations(self):
        assert "Duration" not in format_stats(HistoryStats())
