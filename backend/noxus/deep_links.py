"""Classification of custom-scheme URLs handed to the app by the OS.

A link can carry several facts at once: a password-recovery callback usually
also carries a token pair in its fragment. The handler reports each fact
independently and exposes the primary classification through ``DeepLink.kind``,
evaluated in priority order recovery > OAuth success > token bearing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from urllib.parse import parse_qsl, urlsplit

from .config import Settings

logger = logging.getLogger(__name__)

RECOVERY_TYPE_MARKER = "type=recovery"


class DeepLinkKind(str, Enum):
    RECOVERY = "recovery"
    OAUTH_SUCCESS = "oauth_success"
    TOKEN_BEARING = "token_bearing"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def __repr__(self) -> str:
        return "TokenPair(access_token=***, refresh_token=***)"


@dataclass(frozen=True)
class DeepLink:
    url: str = field(repr=False)
    is_recovery: bool = False
    is_oauth: bool = False
    tokens: Optional[TokenPair] = None

    @property
    def kind(self) -> DeepLinkKind:
        if self.is_recovery:
            return DeepLinkKind.RECOVERY
        if self.is_oauth:
            return DeepLinkKind.OAUTH_SUCCESS
        if self.tokens is not None:
            return DeepLinkKind.TOKEN_BEARING
        return DeepLinkKind.UNRECOGNIZED


def _fragment_tokens(url: str) -> Optional[TokenPair]:
    try:
        fragment = urlsplit(url).fragment
    except ValueError:
        logger.debug("Deep link is not a parsable URL")
        return None
    if not fragment:
        return None
    params = dict(parse_qsl(fragment, keep_blank_values=True))
    access_token = params.get("access_token")
    refresh_token = params.get("refresh_token")
    if not access_token or not refresh_token:
        return None
    return TokenPair(access_token=access_token, refresh_token=refresh_token)


class DeepLinkHandler:
    def __init__(self, settings: Settings) -> None:
        self.scheme = settings.app_scheme
        self.recovery_marker = settings.recovery_callback_path
        self.oauth_marker = settings.oauth_callback_path

    def recovery_redirect_url(self) -> str:
        return f"{self.scheme}://{self.recovery_marker}"

    def oauth_redirect_url(self) -> str:
        return f"{self.scheme}://{self.oauth_marker}"

    def parse(self, url: str) -> DeepLink:
        is_recovery = self.recovery_marker in url or RECOVERY_TYPE_MARKER in url
        is_oauth = not is_recovery and self.oauth_marker in url
        link = DeepLink(
            url=url,
            is_recovery=is_recovery,
            is_oauth=is_oauth,
            tokens=_fragment_tokens(url),
        )
        if link.kind is DeepLinkKind.UNRECOGNIZED:
            logger.debug("Ignoring unrecognized deep link")
        return link


__all__ = [
    "DeepLink",
    "DeepLinkHandler",
    "DeepLinkKind",
    "TokenPair",
]
