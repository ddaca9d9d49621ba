"""Shared test fixtures; no real onnxruntime is needed."""

from __future__ import annotations

import pytest

from .fakes import FakeScheduler


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture(autouse=True)
def _isolated_dirs(tmp_path, monkeypatch) -> None:
    """Keep preferences and the artifact cache out of the home directory."""
    monkeypatch.setenv("PROOFREAD_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("PROOFREAD_CACHE_DIR", str(tmp_path / "cache"))
