"""Registry of known OAuth providers, keyed by name."""

from typing import Optional

from app.providers.apple import AppleOAuthProvider
from app.providers.base import OAuthProvider
from app.providers.facebook import FacebookOAuthProvider
from app.providers.google import GoogleOAuthProvider

PROVIDERS: dict[str, OAuthProvider] = {
    provider.name: provider
    for provider in (GoogleOAuthProvider(), FacebookOAuthProvider(), AppleOAuthProvider())
}


def get_provider(name: str) -> Optional[OAuthProvider]:
    return PROVIDERS.get(name)
