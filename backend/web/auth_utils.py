"""
Shared authentication utilities.

Why:
    Avoid duplicating cookie policy between the app middleware and the auth
    router.

Design:
    The helpers are pure: callers pass the environment string and decide where
    it comes from.
"""

from __future__ import annotations

SESSION_COOKIE_NAME = "taihub_session"


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"
    """
    return {"secure": True, "samesite": "lax"}


def session_cookie_kwargs(environment: str, value: str, *, max_age: int | None = None) -> dict:
    """Keyword arguments for `Response.set_cookie` for the session cookie."""
    opts = cookie_opts(environment)
    kwargs = {
        "key": SESSION_COOKIE_NAME,
        "value": value,
        "httponly": True,
        "secure": opts["secure"],
        "samesite": opts["samesite"],
        "path": "/",
    }
    if max_age is not None:
        kwargs["max_age"] = max_age
    return kwargs


def expired_cookie_kwargs(environment: str) -> dict:
    kwargs = session_cookie_kwargs(environment, "")
    kwargs.update({"expires": 0, "max_age": 0})
    return kwargs
