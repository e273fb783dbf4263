"""Print how the session core would classify a deep link URL."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from noxus.config import get_settings
from noxus.deep_links import DeepLinkHandler

LOGGER = logging.getLogger("noxus.inspect_deep_link")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Classify a custom-scheme deep link.")
    parser.add_argument("url", help="Deep link URL exactly as delivered by the OS.")
    parser.add_argument(
        "--show-tokens",
        action="store_true",
        help="Print the extracted tokens instead of masking them.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        handler = DeepLinkHandler(get_settings())
    except RuntimeError as exc:
        LOGGER.error("Failed to load settings: %s", exc)
        return 1

    link = handler.parse(args.url)
    tokens = None
    if link.tokens is not None:
        tokens = (
            {"access_token": link.tokens.access_token, "refresh_token": link.tokens.refresh_token}
            if args.show_tokens
            else {"access_token": "***", "refresh_token": "***"}
        )
    payload = {
        "kind": link.kind.value,
        "is_recovery": link.is_recovery,
        "is_oauth": link.is_oauth,
        "tokens": tokens,
        "recovery_redirect_url": handler.recovery_redirect_url(),
        "oauth_redirect_url": handler.oauth_redirect_url(),
    }
    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
