"""Identity provider contract.

Sign-in, sign-up and confirmation live with the external identity
provider; the sync layer only asks who the current user is.
"""

from dataclasses import dataclass
from typing import Protocol

from .config import Settings


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None = None

    @property
    def display_email(self) -> str:
        """Email for a freshly created profile, derived like the login flow does."""
        if self.email:
            return self.email
        if "@" in self.user_id:
            return self.user_id
        return f"{self.user_id}@example.com"


class IdentityProvider(Protocol):
    async def current_identity(self) -> Identity | None:
        """Return the signed-in identity, or None when not authenticated."""
        ...


class StaticIdentityProvider:
    """Identity held in memory; set on sign-in, dropped on sign-out."""

    def __init__(self, identity: Identity | None = None):
        self._identity = identity

    async def current_identity(self) -> Identity | None:
        return self._identity

    def sign_in(self, identity: Identity) -> None:
        self._identity = identity

    def sign_out(self) -> None:
        self._identity = None


def identity_from_settings(settings: Settings) -> StaticIdentityProvider:
    if not settings.user_id:
        return StaticIdentityProvider()
    return StaticIdentityProvider(Identity(settings.user_id, settings.email))
