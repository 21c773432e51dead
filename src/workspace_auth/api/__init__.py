"""HTTP surface: the OAuth redirect endpoint, health and metrics."""
