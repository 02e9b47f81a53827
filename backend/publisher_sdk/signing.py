from __future__ import annotations

import hashlib
import hmac
import time


def sign_body(secret: str, raw_body: bytes, *, timestamp: int | None = None) -> tuple[str, str]:
    """Return ``(timestamp, signature)`` header values for ``raw_body``.

    The signature is ``sha256=`` followed by the hex HMAC-SHA256 of
    ``"<timestamp>.<raw body>"`` keyed by the publisher's webhook secret.
    """

    ts = str(int(time.time()) if timestamp is None else timestamp)
    digest = hmac.new(
        secret.encode("utf-8"), ts.encode("utf-8") + b"." + raw_body, hashlib.sha256
    ).hexdigest()
    return ts, f"sha256={digest}"
