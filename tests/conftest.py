"""Shared fixtures for playcurator tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakePlaylistService, MemoryStore


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all playcurator runtime files to a temporary directory.

    Patches ``playcurator.config.get_base_dir`` (and the re-imported reference
    in ``playcurator.cli``) so that nothing touches the real ``~/.playcurator/``.
    """
    fake_base = tmp_path / ".playcurator"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()
    (fake_base / "playlists").mkdir()

    monkeypatch.setattr("playcurator.config.get_base_dir", lambda: fake_base)
    monkeypatch.setattr("playcurator.cli.get_base_dir", lambda: fake_base)

    return fake_base


@pytest.fixture()
def remote() -> FakePlaylistService:
    return FakePlaylistService()


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()
