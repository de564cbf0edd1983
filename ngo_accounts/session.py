"""Presence-flag session gate for the back-office pages.

Signing in stores a single flag; every page checks for it and falls back to
the sign-in screen when it is missing. There is no credential check, token,
or expiry behind it.
"""

from __future__ import annotations

from .errors import ValidationError
from .logging_utils import get_logger
from .store import KeyValueStorage

LOGGER = get_logger(__name__)

AUTH_FLAG_KEY = "ngo_auth"


class AppSession:
    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage

    @property
    def is_authenticated(self) -> bool:
        return self.storage.get(AUTH_FLAG_KEY) is not None

    def sign_in(self, email: str | None, password: str | None) -> None:
        if not (email or "").strip() or not (password or "").strip():
            raise ValidationError("Email and password are required.")
        self.storage.set(AUTH_FLAG_KEY, "true")
        LOGGER.info("Signed in as %s", (email or "").strip())

    def sign_out(self) -> None:
        self.storage.remove(AUTH_FLAG_KEY)
        LOGGER.info("Signed out")
