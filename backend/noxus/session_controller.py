"""Session lifecycle state machine.

The controller owns the session state, the visible view and the local
progress state. Password recovery is carried as the ``RECOVERY_PENDING``
state rather than a side flag. Every path that raises or clears it goes
through ``_enter_recovery`` / ``_leave_recovery`` / ``_discard_session``, and
each of those runs synchronously before the caller's first ``await``. An auth
event that arrives while a token exchange is suspended therefore always
observes the recovery state already set.

Collaborators call the synchronous ``on_auth_event`` / ``on_deep_link``
entry points; they apply state changes immediately and schedule the
suspending remainder as tracked tasks. Nothing is cancelled: a suspended
reconciliation finishes and applies its result, and redirects re-check the
live state after each ``await``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, List, Optional, Set

from .config import Settings
from .deep_links import DeepLink, DeepLinkHandler, DeepLinkKind
from .identity import (
    AuthEvent,
    CredentialError,
    IdentityProvider,
    IdentityStoreError,
    PasswordRecoveryEvent,
    Session,
    SignedOutEvent,
)
from .levels import apply_level
from .profile_store import ProfileStoreError, ProfileTable
from .reconciler import ProfileReconciler
from .sync import SyncScheduler
from .telemetry import emit_event
from .user_state import (
    AppView,
    LocalUserState,
    complete_onboarding,
    initial_state,
    reset_streak,
    resolve_timezone,
    with_start_date,
    with_streak_days,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    RECOVERY_PENDING = "recovery_pending"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthSessionController:
    def __init__(
        self,
        settings: Settings,
        identity: IdentityProvider,
        profiles: ProfileTable,
        *,
        deep_links: Optional[DeepLinkHandler] = None,
        reconciler: Optional[ProfileReconciler] = None,
        sync: Optional[SyncScheduler] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._identity = identity
        self._profiles = profiles
        self._clock = clock
        self._tz = resolve_timezone(settings.timezone)
        self.deep_links = deep_links or DeepLinkHandler(settings)
        self.reconciler = reconciler or ProfileReconciler(profiles, clock=clock)
        self.sync = sync or SyncScheduler(
            identity,
            profiles,
            is_suppressed=lambda: self.recovery_mode,
            clock=clock,
        )

        self.state = SessionState.UNAUTHENTICATED
        self.view = AppView.AUTH
        self.user_state: LocalUserState = initial_state(clock())
        self.loading = False
        self._active_user_id: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()
        self._view_listeners: List[Callable[[AppView], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def recovery_mode(self) -> bool:
        return self.state is SessionState.RECOVERY_PENDING

    # --- state and view bookkeeping -------------------------------------

    def _set_state(self, new_state: SessionState, reason: str) -> None:
        if new_state is self.state:
            return
        previous = self.state
        self.state = new_state
        logger.info("Session state %s -> %s (%s)", previous.value, new_state.value, reason)
        emit_event("auth_state_changed", previous=previous, current=new_state, reason=reason)

    def _show(self, view: AppView) -> None:
        if view is self.view:
            return
        previous = self.view
        self.view = view
        emit_event("view_changed", previous=previous, current=view)
        for listener in list(self._view_listeners):
            try:
                listener(view)
            except Exception:  # noqa: BLE001
                logger.exception("View listener failed for %s", view.value)

    def add_view_listener(self, listener: Callable[[AppView], None]) -> None:
        self._view_listeners.append(listener)

    def navigate(self, view: AppView) -> bool:
        """User-driven navigation; refused while a password reset is pending."""
        if self.recovery_mode and view is not AppView.UPDATE_PASSWORD:
            logger.info("Navigation to %s blocked during password recovery", view.value)
            return False
        self._show(view)
        return True

    def _enter_recovery(self, reason: str) -> None:
        self._set_state(SessionState.RECOVERY_PENDING, reason)
        self._show(AppView.UPDATE_PASSWORD)

    def _leave_recovery(self, reason: str) -> None:
        if self.recovery_mode:
            self._set_state(SessionState.AUTHENTICATING, reason)

    def _discard_session(self, reason: str) -> None:
        self._set_state(SessionState.UNAUTHENTICATED, reason)
        self._active_user_id = None
        self.user_state = initial_state(self._clock())
        self.sync.ready = False
        self._show(AppView.AUTH)

    # --- background task tracking ---------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background session task failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every scheduled follow-up, including ones they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._identity.on_auth_state_change(self.on_auth_event)
        self.loading = True
        session = await self._current_session()
        if session is None:
            self.loading = False
            if not self.recovery_mode:
                self._set_state(SessionState.UNAUTHENTICATED, "no_session")
                self._show(AppView.AUTH)
            return
        await self._reconcile(session, redirect=True, reason="existing_session")

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.drain()

    async def refresh(self) -> bool:
        """Background re-validation; reconciles without ever redirecting."""
        session = await self._current_session()
        if session is None:
            return False
        return await self._reconcile(session, redirect=False, reason="refresh")

    async def _current_session(self) -> Optional[Session]:
        try:
            return await self._identity.get_session()
        except IdentityStoreError as exc:
            logger.error("Session lookup failed: %s", exc)
            return None

    async def _reconcile(self, session: Session, *, redirect: bool, reason: str) -> bool:
        user_id = session.user.id
        self._active_user_id = user_id
        if self.state is SessionState.UNAUTHENTICATED:
            self._set_state(SessionState.AUTHENTICATING, reason)

        try:
            stored, reconciled = await self.reconciler.reconcile_profile(session)
        except (ProfileStoreError, IdentityStoreError) as exc:
            logger.error("Error fetching profile for user_id=%s: %s", user_id, exc)
            emit_event(
                "profile_reconcile_failed",
                user_id=user_id,
                reason=reason,
                code=getattr(exc, "code", None),
            )
            return False
        finally:
            self.loading = False

        if self._active_user_id != user_id:
            logger.info("Dropping profile for user_id=%s: session ended while loading", user_id)
            return False

        if not self.recovery_mode:
            self._set_state(SessionState.AUTHENTICATED, reason)
        self.sync.ready = True

        derived = apply_level(reconciled)
        self.user_state = derived
        emit_event(
            "profile_reconciled",
            user_id=user_id,
            reason=reason,
            streak_days=derived.streak_days,
            level=derived.current_level,
        )
        if derived is not reconciled or stored.streak_days != derived.streak_days:
            # Stored tier or day count is stale; the row is rewritten from local state.
            await self.sync.push(derived)

        if redirect and not self.recovery_mode:
            self._show(AppView.DASHBOARD)
        return True

    # --- pushed auth events ----------------------------------------------

    def on_auth_event(self, event: AuthEvent) -> None:
        """Listener registered with the identity provider."""
        follow_up = self._admit_auth_event(event)
        if follow_up is not None:
            self._spawn(follow_up)

    async def handle_auth_event(self, event: AuthEvent) -> None:
        follow_up = self._admit_auth_event(event)
        if follow_up is not None:
            await follow_up

    def _admit_auth_event(self, event: AuthEvent) -> Optional[Coroutine[Any, Any, bool]]:
        logger.info("Auth event: %s", event.kind)
        if isinstance(event, PasswordRecoveryEvent):
            self._enter_recovery("password_recovery_event")
            return None
        if isinstance(event, SignedOutEvent):
            self._discard_session("signed_out_event")
            return None
        # Signed in: the redirect gate re-reads recovery state once the profile arrives.
        return self._reconcile(event.session, redirect=True, reason="signed_in_event")

    # --- deep links ------------------------------------------------------

    def on_deep_link(self, url: str) -> DeepLink:
        """Listener registered with the OS deep link source."""
        link = self._admit_deep_link(url)
        if link.kind is not DeepLinkKind.UNRECOGNIZED:
            self._spawn(self._complete_deep_link(link))
        return link

    async def handle_deep_link(self, url: str) -> DeepLink:
        link = self._admit_deep_link(url)
        await self._complete_deep_link(link)
        return link

    def _admit_deep_link(self, url: str) -> DeepLink:
        link = self.deep_links.parse(url)
        if link.is_recovery:
            self._enter_recovery("recovery_deep_link")
        emit_event("deep_link_received", kind=link.kind, has_tokens=link.tokens is not None)
        return link

    async def _complete_deep_link(self, link: DeepLink) -> None:
        if link.kind is DeepLinkKind.UNRECOGNIZED:
            return

        session: Optional[Session] = None
        if link.tokens is not None:
            try:
                session = await self._identity.set_session(
                    link.tokens.access_token,
                    link.tokens.refresh_token,
                )
            except IdentityStoreError as exc:
                logger.error("Set session error: %s", exc)
                emit_event("token_exchange_failed", kind=link.kind, error=str(exc))
                return

        if link.is_recovery:
            # The identity store's SIGNED_IN event loads the profile silently.
            self._enter_recovery("recovery_deep_link")
            return

        if link.is_oauth:
            self._leave_recovery("oauth_deep_link")
            if session is None:
                session = await self._current_session()
            if session is None:
                logger.warning("OAuth callback arrived without a session")
                return
            await self._reconcile(session, redirect=True, reason="oauth_deep_link")
            return

        if session is not None:
            await self._reconcile(session, redirect=True, reason="token_deep_link")

    # --- credential actions ----------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> None:
        session = await self._identity.sign_in_with_password(email, password)
        await self._reconcile(session, redirect=True, reason="password_sign_in")

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        """Returns ``None`` while the address still needs confirming."""
        if len(password) < MIN_PASSWORD_LENGTH:
            raise CredentialError(f"Password must have at least {MIN_PASSWORD_LENGTH} characters.")
        return await self._identity.sign_up(email, password)

    async def sign_in_with_oauth(self, provider: Optional[str] = None) -> str:
        return await self._identity.sign_in_with_oauth(
            provider or self._settings.oauth_provider,
            self.deep_links.oauth_redirect_url(),
        )

    async def request_password_reset(self, email: Optional[str] = None) -> None:
        address = email or self.user_state.email
        if not address:
            raise CredentialError("An email address is required to reset the password.")
        await self._identity.reset_password_for_email(address, self.deep_links.recovery_redirect_url())
        emit_event("password_reset_requested")

    async def update_password(self, new_password: str) -> None:
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise CredentialError(f"Password must have at least {MIN_PASSWORD_LENGTH} characters.")
        await self._identity.update_user(new_password)
        emit_event("password_updated", during_recovery=self.recovery_mode)
        if not self.recovery_mode:
            return

        self._leave_recovery("password_updated")
        session = await self._current_session()
        if session is None:
            logger.warning("Password updated but no session is available")
            self._discard_session("password_updated_without_session")
            return
        await self._reconcile(session, redirect=True, reason="password_updated")

    async def sign_out(self) -> None:
        try:
            await self._identity.sign_out()
        except IdentityStoreError as exc:
            logger.warning("Sign-out failed at the identity store: %s", exc)
        self._discard_session("sign_out")

    # --- local state mutations -------------------------------------------

    async def _commit(self, updated: LocalUserState) -> bool:
        derived = apply_level(updated)
        if derived == self.user_state:
            return False
        self.user_state = derived
        await self.sync.push(derived)
        return True

    async def edit_streak_days(self, days: int) -> LocalUserState:
        await self._commit(with_streak_days(self.user_state, days, now=self._clock()))
        return self.user_state

    async def edit_start_date(self, start: date) -> LocalUserState:
        today = self._clock().astimezone(self._tz).date()
        await self._commit(with_start_date(self.user_state, start, today=today, tz=self._tz))
        return self.user_state

    async def reset_streak(self, *, confirmed: bool) -> bool:
        """Relapse reset; destroys the current streak, so it needs confirmation."""
        if not confirmed:
            logger.info("Streak reset not confirmed, keeping %d days", self.user_state.streak_days)
            return False
        await self._commit(reset_streak(self.user_state, now=self._clock()))
        emit_event("streak_reset")
        return True

    async def complete_onboarding(self) -> None:
        await self._commit(complete_onboarding(self.user_state))
        self.navigate(AppView.DASHBOARD)

    async def update_avatar(self, avatar_url: str) -> None:
        session = await self._current_session()
        if session is None:
            raise CredentialError("No active session.")
        try:
            await self._profiles.update(session.user.id, {"avatar_url": avatar_url})
        except ProfileStoreError as exc:
            logger.error("Avatar update failed for user_id=%s: %s", session.user.id, exc)
            emit_event("avatar_update_failed", user_id=session.user.id, code=exc.code)
            raise
        self.user_state = self.user_state.model_copy(update={"avatar_url": avatar_url})


__all__ = [
    "AuthSessionController",
    "MIN_PASSWORD_LENGTH",
    "SessionState",
]
