"""Shared fixtures for terzi tests."""

import json

import pytest
from click.testing import CliRunner

from terzi import config as config_module
from terzi import storage as storage_module
from terzi.config import Config
from terzi.executor import Response
from terzi.storage import Storage


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def terzi_home(tmp_path, monkeypatch):
    """Point the default data and config directories at a temp location."""
    home = tmp_path / "fake_config" / "terzi"
    home.mkdir(parents=True)
    monkeypatch.setattr(storage_module, "DATA_DIR", home)
    monkeypatch.setattr(config_module, "CONFIG_DIR", home)
    monkeypatch.delenv("TERZI_DATA_DIR", raising=False)
    monkeypatch.delenv("TERZI_CONFIG", raising=False)
    monkeypatch.delenv("EDITOR", raising=False)
    return home


@pytest.fixture
def storage(tmp_path):
    return Storage(tmp_path / "data")


@pytest.fixture
def config(tmp_path):
    return Config.defaults(path=tmp_path / "config.toml")


def make_response(
    status=200,
    body=None,
    headers=None,
    duration=0.25,
    url="https://api.example.com/users",
    method="GET",
):
    """Factory for Response objects returned by a patched execute_request."""
    if isinstance(body, dict | list):
        text = json.dumps(body)
        headers = {"Content-Type": "application/json", **(headers or {})}
    else:
        text = body or ""
    return Response(
        status=status,
        headers=headers or {},
        body=text,
        duration=duration,
        size=len(text.encode("utf-8")),
        url=url,
        method=method,
    )
