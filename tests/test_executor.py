"""Tests for HTTP execution and history recording."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from terzi.errors import TimedOut, TransportError
from terzi.executor import Response, build_request_kwargs, execute_and_record, execute_request
from terzi.request import RequestBuilder
from tests.conftest import make_response


def _session(status=200, text='{"ok": true}', headers=None, side_effect=None):
    session = MagicMock(spec=requests.Session)
    if side_effect is not None:
        session.request.side_effect = side_effect
        return session
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.content = text.encode("utf-8")
    resp.headers = headers or {"Content-Type": "application/json"}
    session.request.return_value = resp
    return session


# ── Request kwargs ───────────────────────────────────────────────────────


class TestBuildKwargs:
    def test_timeout_falls_back_to_config(self, config):
        req = RequestBuilder("https://api.example.com").build()
        assert build_request_kwargs(req, config)["timeout"] == 30

    def test_request_timeout_wins(self, config):
        req = RequestBuilder("https://api.example.com").timeout(5).build()
        assert build_request_kwargs(req, config)["timeout"] == 5

    def test_redirects_fall_back_to_config(self, config):
        config.general.follow_redirects = False
        req = RequestBuilder("https://api.example.com").build()
        assert build_request_kwargs(req, config)["allow_redirects"] is False
        req.follow_redirects = True
        assert build_request_kwargs(req, config)["allow_redirects"] is True

    def test_user_agent_added(self, config):
        req = RequestBuilder("https://api.example.com").build()
        headers = build_request_kwargs(req, config)["headers"]
        assert headers["User-Agent"] == config.network.user_agent

    def test_user_agent_not_overridden(self, config):
        req = RequestBuilder("https://api.example.com").header("user-agent", "mine").build()
        headers = build_request_kwargs(req, config)["headers"]
        assert headers == {"user-agent": "mine"}

    def test_network_options(self, config):
        config.network.proxy_url = "http://proxy:8080"
        config.network.verify_ssl = False
        config.network.compression = False
        config.network.keep_alive = False
        req = RequestBuilder("https://api.example.com").build()
        kwargs = build_request_kwargs(req, config)
        assert kwargs["proxies"] == {"http": "http://proxy:8080", "https": "http://proxy:8080"}
        assert kwargs["verify"] is False
        assert kwargs["headers"]["Accept-Encoding"] == "identity"
        assert kwargs["headers"]["Connection"] == "close"

    def test_body_encoded(self, config):
        req = RequestBuilder("https://api.example.com", "POST").raw_body("héllo").build()
        assert build_request_kwargs(req, config)["data"] == "héllo".encode()

    def test_no_body(self, config):
        req = RequestBuilder("https://api.example.com").build()
        assert build_request_kwargs(req, config)["data"] is None


# ── execute_request ──────────────────────────────────────────────────────


class TestExecuteRequest:
    def test_success(self, config):
        session = _session(status=201, text='{"id": 1}')
        req = RequestBuilder("https://api.example.com/users", "post").json_body('{"a":1}').build()
        resp = execute_request(req, config, session=session)
        assert resp.status == 201
        assert resp.body == '{"id": 1}'
        assert resp.size == 9
        assert resp.method == "POST"
        assert resp.url == "https://api.example.com/users"
        assert resp.is_json()
        assert resp.duration >= 0
        _, kwargs = session.request.call_args
        assert kwargs["method"] == "POST"
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert session.max_redirects == config.network.max_redirects
        session.close.assert_not_called()

    def test_owns_session_when_none_given(self, config):
        session = _session()
        with patch("terzi.executor.requests.Session", return_value=session):
            execute_request(RequestBuilder("https://api.example.com").build(), config)
        session.close.assert_called_once()

    def test_default_config(self):
        session = _session()
        execute_request(RequestBuilder("https://api.example.com").build(), session=session)
        _, kwargs = session.request.call_args
        assert kwargs["timeout"] == 30

    def test_timeout(self, config):
        session = _session(side_effect=requests.exceptions.ReadTimeout("slow"))
        req = RequestBuilder("https://api.example.com").timeout(5).build()
        with pytest.raises(TimedOut, match="Request timed out after 5s") as exc:
            execute_request(req, config, session=session)
        assert isinstance(exc.value, TransportError)

    def test_connection_error(self, config):
        session = _session(side_effect=requests.exceptions.ConnectionError("refused"))
        with pytest.raises(TransportError, match="Connection error: refused"):
            execute_request(RequestBuilder("https://api.example.com").build(), config, session=session)

    def test_other_request_error(self, config):
        session = _session(side_effect=requests.exceptions.TooManyRedirects("loop"))
        with pytest.raises(TransportError, match="Request failed: loop"):
            execute_request(RequestBuilder("https://api.example.com").build(), config, session=session)


# ── Response helpers ─────────────────────────────────────────────────────


class TestResponse:
    def test_status_classes(self):
        assert Response(204).is_success()
        assert Response(404).is_client_error()
        assert Response(502).is_server_error()
        assert not Response(301).is_success()

    def test_content_type_case_insensitive(self):
        resp = Response(200, headers={"content-type": "text/html; charset=utf-8"})
        assert resp.content_type() == "text/html; charset=utf-8"
        assert resp.is_html()
        assert not resp.is_json()

    def test_xml(self):
        assert Response(200, headers={"Content-Type": "text/xml"}).is_xml()
        assert Response(200, headers={"Content-Type": "application/xml"}).is_xml()
        assert Response(200).content_type() is None

    def test_human_sizes(self):
        assert Response(200, size=512).size_human() == "512 B"
        assert Response(200, size=2048).size_human() == "2.0 KB"
        assert Response(200, size=5 * 1024 * 1024).size_human() == "5.0 MB"

    def test_human_durations(self):
        assert Response(200, duration=0.25).duration_human() == "250ms"
        assert Response(200, duration=1.5).duration_human() == "1.50s"
        assert Response(200, duration=0.25).duration_ms == 250


# ── execute_and_record ───────────────────────────────────────────────────


class TestExecuteAndRecord:
    @patch("terzi.executor.execute_request")
    def test_success_recorded(self, mock_exec, storage, config):
        mock_exec.return_value = make_response(status=200, body={"ok": True})
        req = RequestBuilder("https://api.example.com/users").build()
        resp = execute_and_record(req, storage, config)
        assert resp.status == 200
        [entry] = storage.get_history()
        assert entry.response_status == 200
        assert entry.duration_ms == 250

    @patch("terzi.executor.execute_request")
    def test_timeout_recorded_then_raised(self, mock_exec, storage, config):
        mock_exec.side_effect = TimedOut(5)
        req = RequestBuilder("https://api.example.com/slow").build()
        with pytest.raises(TimedOut):
            execute_and_record(req, storage, config)
        [entry] = storage.get_history()
        assert entry.response_status is None
        assert "timed out" in entry.error_message

    @patch("terzi.executor.execute_request")
    def test_ok_then_timeout_history(self, mock_exec, storage, config):
        ok = RequestBuilder("https://api.example.com/ok").build()
        slow = RequestBuilder("https://api.example.com/slow").build()
        mock_exec.return_value = make_response(status=200)
        execute_and_record(ok, storage, config)
        mock_exec.side_effect = TimedOut(5)
        with pytest.raises(TimedOut):
            execute_and_record(slow, storage, config)

        history = storage.get_history(10)
        assert len(history) == 2
        assert history[0].url == "https://api.example.com/slow"
        assert history[0].error_message is not None
        assert history[1].response_status == 200
        stats = storage.get_history_stats()
        assert stats.successful_requests == 1
        assert stats.failed_requests == 1

    @patch("terzi.executor.execute_request")
    def test_error_chain_recorded(self, mock_exec, storage, config):
        try:
            try:
                raise OSError("[Errno 111] Connection refused")
            except OSError as inner:
                raise TransportError("Connection error") from inner
        except TransportError as e:
            mock_exec.side_effect = e
        with pytest.raises(TransportError):
            execute_and_record(RequestBuilder("https://api.example.com").build(), storage, config)
        entry = storage.get_history()[0]
        assert entry.error_message == "Connection error → [Errno 111] Connection refused"

    @patch("terzi.executor.execute_request")
    def test_history_disabled(self, mock_exec, storage, config):
        config.general.save_history = False
        mock_exec.return_value = make_response()
        execute_and_record(RequestBuilder("https://api.example.com").build(), storage, config)
        mock_exec.side_effect = TransportError("down")
        with pytest.raises(TransportError):
            execute_and_record(RequestBuilder("https://api.example.com").build(), storage, config)
        assert storage.get_history() == []
