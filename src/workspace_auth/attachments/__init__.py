"""Bounded attachment-metadata index, its cleanup scheduler and response transformer."""
