"""Multi-account Google OAuth2 credential lifecycle for workspace tool adapters."""

__version__ = "0.1.0"
