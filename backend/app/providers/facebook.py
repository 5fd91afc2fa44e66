from app.providers.base import UnconfiguredProvider


class FacebookOAuthProvider(UnconfiguredProvider):
    name = "facebook"
