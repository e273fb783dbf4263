from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from noxus.config import Settings, get_settings
from noxus.db.session import dispose_engine
from noxus.main import create_session_controller
from noxus.profile_store import DatabaseProfileTable, RestProfileTable
from noxus.session_controller import SessionState
from noxus.supabase_auth import SupabaseAuthClient
from noxus.user_state import AppView


def test_controller_wired_to_rest_backend(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - start() makes no request
        raise AssertionError(f"unexpected request to {request.url}")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    controller = create_session_controller(settings, client=client)

    assert isinstance(controller._identity, SupabaseAuthClient)  # type: ignore[attr-defined]
    assert isinstance(controller._profiles, RestProfileTable)  # type: ignore[attr-defined]

    asyncio.run(controller.start())

    assert controller.state is SessionState.UNAUTHENTICATED
    assert controller.view is AppView.AUTH


def test_database_backend_uses_explicit_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NOXUS_DATABASE_URL", raising=False)
    monkeypatch.delenv("NOXUS_PROFILE_BACKEND", raising=False)
    get_settings.cache_clear()
    dispose_engine()
    settings = Settings(  # type: ignore[call-arg]
        NOXUS_PROFILE_BACKEND="database",
        NOXUS_DATABASE_URL=f"sqlite:///{tmp_path / 'explicit.db'}",
        _env_file=None,
    )
    try:
        controller = create_session_controller(settings)
        profiles = controller._profiles  # type: ignore[attr-defined]
        assert isinstance(profiles, DatabaseProfileTable)
        assert (tmp_path / "explicit.db").exists()

        profiles_row = asyncio.run(profiles.fetch("nobody"))
        assert profiles_row is None
    finally:
        dispose_engine()
        get_settings.cache_clear()


def test_controller_wired_to_database_backend(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOXUS_PROFILE_BACKEND", "database")
    monkeypatch.setenv("NOXUS_DATABASE_URL", f"sqlite:///{tmp_path / 'main.db'}")
    get_settings.cache_clear()
    dispose_engine()
    try:
        controller = create_session_controller()
        assert isinstance(controller._profiles, DatabaseProfileTable)  # type: ignore[attr-defined]
        assert (tmp_path / "main.db").exists()
    finally:
        dispose_engine()
        get_settings.cache_clear()
