"""OAuth provider contract.

Each provider turns an authorization request into a redirect URL, trades
the callback code for tokens, and fetches the user's profile. None are
wired to a real identity provider yet.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import ClassVar, Literal, Optional

from pydantic import BaseModel, Field

ProviderName = Literal["google", "facebook", "apple"]


class OAuthTokens(BaseModel):
    """Tokens returned by a provider's token endpoint."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: list[str] = Field(default_factory=list)
    id_token: Optional[str] = None


class ProviderProfile(BaseModel):
    """User identity as reported by a provider."""
    id: str
    email: str
    name: Optional[str] = None
    email_verified: bool = False
    avatar_url: Optional[str] = None


class OAuthProvider(ABC):
    """Capability interface implemented once per identity provider."""

    name: ClassVar[ProviderName]

    @abstractmethod
    def authorization_url(self, *, state: str, code_challenge: str) -> str:
        """URL to redirect the browser to, carrying state and PKCE challenge."""

    @abstractmethod
    async def exchange_code(
        self, *, code: str, code_verifier: str, redirect_uri: str
    ) -> OAuthTokens:
        """Trade an authorization code for tokens."""

    @abstractmethod
    async def fetch_profile(self, tokens: OAuthTokens) -> ProviderProfile:
        """Load the signed-in user's profile."""


class UnconfiguredProvider(OAuthProvider):
    """Provider declared in the registry but not implemented yet."""

    @property
    def display_name(self) -> str:
        return self.name.capitalize()

    def _not_implemented(self) -> NotImplementedError:
        return NotImplementedError(f"{self.display_name} OAuth not implemented yet")

    def authorization_url(self, *, state: str, code_challenge: str) -> str:
        raise self._not_implemented()

    async def exchange_code(
        self, *, code: str, code_verifier: str, redirect_uri: str
    ) -> OAuthTokens:
        raise self._not_implemented()

    async def fetch_profile(self, tokens: OAuthTokens) -> ProviderProfile:
        raise self._not_implemented()
