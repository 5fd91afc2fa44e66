from app.providers.base import UnconfiguredProvider


class GoogleOAuthProvider(UnconfiguredProvider):
    name = "google"
