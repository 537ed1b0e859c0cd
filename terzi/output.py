"""terzi output - plain-text rendering of responses, requests and history."""

import json
from typing import Any

import click
import yaml

from terzi.utils import format_bytes, mask_headers, mask_sensitive_body, truncate_string

OUTPUT_FORMATS = ("auto", "json", "yaml", "table", "raw")


def _status_color(status: int | None) -> str:
    if status is None:
        return "red"
    if 200 <= status < 300:
        return "green"
    if 300 <= status < 400:
        return "yellow"
    return "red"


def _style(text: str, color: bool, **kwargs) -> str:
    return click.style(text, **kwargs) if color else text


def _parse_json(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def _table(headers: list[str], rows: list[list[str]]) -> str:
    """Left-aligned text table with a dashed rule under the header."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    lines = ["  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)).rstrip()]
    lines.append("  ".join("-" * w for w in widths))
    for row in rows:
        lines.append("  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip())
    return "\n".join(lines)


def _json_table(data: Any) -> str | None:
    """Tabulate a JSON object or a list of objects; None if not tabular."""
    if isinstance(data, dict):
        rows = [[str(k), _cell(v)] for k, v in data.items()]
        return _table(["Key", "Value"], rows)
    if isinstance(data, list) and data and all(isinstance(item, dict) for item in data):
        columns: list[str] = []
        for item in data:
            for key in item:
                if key not in columns:
                    columns.append(key)
        rows = [[_cell(item.get(c, "")) for c in columns] for item in data]
        return _table(columns, rows)
    return None


def _cell(value: Any) -> str:
    return json.dumps(value) if isinstance(value, dict | list) else str(value)


def format_body(body: str, output_format: str = "auto", pretty: bool = True) -> str:
    if output_format == "raw" or not body:
        return body

    is_json, data = _parse_json(body)
    if not is_json:
        return body

    if output_format == "yaml":
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).rstrip()
    if output_format == "table":
        table = _json_table(data)
        if table is not None:
            return table
    if pretty:
        return json.dumps(data, indent=2, ensure_ascii=False)
    return json.dumps(data, ensure_ascii=False)


def format_response(
    response,
    output_format: str = "auto",
    show_headers: bool = False,
    pretty: bool = True,
    show_timing: bool = True,
    show_size: bool = True,
    max_body_length: int | None = None,
    color: bool = False,
) -> str:
    """Render a Response as STATUS / TIME / SIZE / HEADERS / BODY lines."""
    if output_format == "raw":
        return response.body

    lines: list[str] = []
    lines.append(
        _style(
            f"STATUS: {response.status}",
            color,
            fg=_status_color(response.status),
            bold=True,
        ),
    )
    if show_timing:
        lines.append(f"TIME: {response.duration_human()}")
    if show_size:
        lines.append(f"SIZE: {response.size_human()}")

    if show_headers and response.headers:
        lines.append("HEADERS:")
        for key, value in response.headers.items():
            lines.append(f"  {_style(key, color, fg='cyan')}: {value}")

    if response.body:
        body = format_body(response.body, output_format, pretty)
        if max_body_length is not None and len(body) > max_body_length:
            body = (
                body[:max_body_length]
                + f"\n... ({len(body) - max_body_length} more characters truncated)"
            )
        lines.append("BODY:")
        lines.append(body)

    return "\n".join(lines)


def format_request_list(requests) -> str:
    if not requests:
        return (
            "No saved requests found. "
            "Create one with 'terzi --save <name> <url>' or 'terzi interactive'"
        )
    rows = [
        [r.name, r.method, truncate_string(r.url, 60), r.created_at.strftime("%Y-%m-%d %H:%M")]
        for r in requests
    ]
    return _table(["Name", "Method", "URL", "Created"], rows)


def format_request_details(request) -> str:
    """Human-readable request with secrets in headers and body masked."""
    lines = [
        f"Request: {request.name}",
        f"URL: {request.url}",
        f"Method: {request.method}",
    ]
    if request.description:
        lines.append(f"Description: {request.description}")
    if request.tags:
        lines.append(f"Tags: {', '.join(request.tags)}")
    if request.headers:
        lines.append("Headers:")
        for key, value in mask_headers(request.headers).items():
            lines.append(f"  {key}: {value}")
    if request.body is not None:
        lines.append(f"Body: {mask_sensitive_body(request.body)}")
    if request.timeout is not None:
        lines.append(f"Timeout: {request.timeout}s")
    if request.follow_redirects is not None:
        lines.append(f"Follow redirects: {'yes' if request.follow_redirects else 'no'}")
    lines.append(f"Created: {request.created_at.isoformat()}")
    lines.append(f"Updated: {request.updated_at.isoformat()}")
    return "\n".join(lines)


def format_history(entries) -> str:
    if not entries:
        return "No request history found. Make some requests first!"
    rows = []
    for e in entries:
        status = str(e.response_status) if e.response_status is not None else "ERROR"
        duration = f"{e.duration_ms}ms" if e.duration_ms is not None else "-"
        size = format_bytes(e.response_size) if e.response_size is not None else "-"
        rows.append(
            [
                e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                e.method,
                truncate_string(e.url, 60),
                status,
                duration,
                size,
            ],
        )
    return _table(["Time", "Method", "URL", "Status", "Duration", "Size"], rows)


def format_stats(stats) -> str:
    lines = [
        f"Total requests: {stats.total_requests}",
        f"Successful (2xx): {stats.successful_requests}",
        f"Client errors (4xx): {stats.client_errors}",
        f"Server errors (5xx): {stats.server_errors}",
        f"Failed (no response): {stats.failed_requests}",
    ]
    if stats.average_duration_ms is not None:
        lines.append(
            f"Duration: avg {stats.average_duration_ms}ms, "
            f"min {stats.min_duration_ms}ms, max {stats.max_duration_ms}ms",
        )
    return "\n".join(lines)
