"""Composition root, slash commands and entrypoint."""
