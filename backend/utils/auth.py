"""Bearer token check shared by every scan route."""

import hmac


def token_matches(authorization: str | None, secret: str) -> bool:
    """
    Compare an Authorization header against ``Bearer <secret>``.

    Uses hmac.compare_digest so the time taken does not depend on how much of
    the secret matched. A missing header compares as the empty string.

    Args:
        authorization: Raw Authorization header value, or None.
        secret: Configured bearer secret.

    Returns:
        bool: True if the header carries exactly the configured token.
    """
    if not secret:
        return False
    presented = (authorization or "").encode("utf-8")
    expected = f"Bearer {secret}".encode("utf-8")
    return hmac.compare_digest(presented, expected)
