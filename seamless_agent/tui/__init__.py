"""Textual console for answering agent requests from a terminal."""
