"""Shared fixtures: every test runs against built-in config defaults."""

import pytest

from promptcascade.observability import clear_trace_context


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("PROMPTCASCADE_CONFIG", str(tmp_path / "missing-configuration.json"))
    yield
    clear_trace_context()
