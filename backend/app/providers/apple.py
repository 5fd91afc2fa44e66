from app.providers.base import UnconfiguredProvider


class AppleOAuthProvider(UnconfiguredProvider):
    name = "apple"
