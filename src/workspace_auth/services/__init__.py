"""Typed Google Workspace API clients built by the authenticated client cache."""
