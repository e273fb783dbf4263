import logging
from typing import Optional

import httpx

from .config import Settings, get_settings
from .db.session import ensure_schema
from .logging_config import configure_logging
from .profile_store import DatabaseProfileTable, ProfileTable, RestProfileTable
from .session_controller import AuthSessionController
from .supabase_auth import SupabaseAuthClient

logger = logging.getLogger(__name__)


def build_profile_table(settings: Settings, identity: SupabaseAuthClient, client: httpx.AsyncClient) -> ProfileTable:
    if settings.profile_backend == "database":
        ensure_schema(settings)
        return DatabaseProfileTable(settings)
    return RestProfileTable(settings, identity, client=client)


def create_session_controller(
    settings: Optional[Settings] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> AuthSessionController:
    """Build a controller wired to Supabase auth and the configured profile backend.

    The caller owns ``client`` when it passes one; otherwise a shared client is
    created with the configured timeout (none by default).
    """
    configure_logging()
    resolved = settings or get_settings()
    http_client = client or httpx.AsyncClient(timeout=resolved.request_timeout_seconds)

    identity = SupabaseAuthClient(resolved, client=http_client)
    profiles = build_profile_table(resolved, identity, http_client)

    logger.info("Session core using Supabase at %s", resolved.supabase_url)
    logger.info("Profile backend: %s", resolved.profile_backend)
    logger.info("Supabase anon key configured: %s", bool(resolved.supabase_anon_key))
    return AuthSessionController(resolved, identity, profiles)
