"""
Bearer token management.

The token lives in a diskcache so the running service and the operator CLI
(separate processes) share it. AUTH_BEARER_TOKEN from the environment is the
fallback when nothing has been cached yet.
"""

from __future__ import annotations

import logging
from typing import Any

import diskcache

from courtbot.config import BookingConstants

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "bearer_token"


def mask_token(token: str) -> str:
    if not token:
        return "none"
    if len(token) <= 12:
        return "*" * len(token)
    return f"{token[:8]}...{token[-4:]}"


class AuthManager:
    """Centralized bearer token storage."""

    def __init__(self, cache: diskcache.Cache, fallback_token: str = ""):
        self._cache = cache
        self._fallback_token = fallback_token.strip()

    def get_token(self) -> str:
        """
        Get the current bearer token.

        Returns:
            The cached token, else the environment fallback, else ""
        """
        token = self._cache.get(TOKEN_CACHE_KEY)
        if isinstance(token, str) and token:
            return token

        if not self._fallback_token:
            logger.warning("Token requested but not available")
        return self._fallback_token

    def has_token(self) -> bool:
        return bool(self.get_token())

    def update_token(self, token: str) -> None:
        """
        Persist a new bearer token.

        Args:
            token: Raw token, optionally prefixed with "Bearer "

        Raises:
            ValueError: If the token is empty or contains whitespace
        """
        if not isinstance(token, str):
            raise ValueError("Invalid token provided")

        parts = token.split()
        if parts and parts[0].lower() == "bearer":
            parts = parts[1:]
        token = " ".join(parts)
        if not token or " " in token:
            raise ValueError("Invalid token provided")

        old_preview = mask_token(self.get_token())
        expiry_seconds = BookingConstants.TOKEN_CACHE_EXPIRY_HOURS * 60 * 60
        self._cache.set(TOKEN_CACHE_KEY, token, expire=expiry_seconds)
        logger.info(f"Bearer token updated ({old_preview} -> {mask_token(token)})")

    def clear(self) -> None:
        self._cache.delete(TOKEN_CACHE_KEY)
        logger.info("Cached bearer token cleared")

    def status(self) -> dict[str, Any]:
        cached = self._cache.get(TOKEN_CACHE_KEY)
        token = self.get_token()
        if isinstance(cached, str) and cached:
            source = "cache"
        elif token:
            source = "environment"
        else:
            source = "none"

        return {
            "has_token": bool(token),
            "source": source,
            "preview": mask_token(token),
            "length": len(token),
        }
