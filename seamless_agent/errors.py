"""Exception hierarchy for Seamless Agent.

Most broker-level failures are reported as values (responded=False,
``{"error": ...}`` dicts). These exceptions cover the seams that do
raise: the bridge client, the review panel host and the stores.
"""
from __future__ import annotations


class SeamlessAgentError(Exception):
    """Base exception for all Seamless Agent errors."""


class BridgeUnavailableError(SeamlessAgentError):
    """The local HTTP bridge could not be reached."""
    def __init__(self, port: int, reason: str = ""):
        self.port = port
        self.reason = reason
        super().__init__(
            f"Cannot connect to Seamless Agent extension API at port {port}. "
            "Please ensure the VS Code extension is running and the API "
            "service has started."
        )


class BridgeRequestError(SeamlessAgentError):
    """The bridge answered with a non-success HTTP status."""
    def __init__(self, status: int, message: str, payload: dict | None = None):
        self.status = status
        self.message = message
        self.payload = payload or {}
        super().__init__(f"HTTP {status}: {message}")


class PanelError(SeamlessAgentError):
    """The review panel could not be shown."""
    def __init__(self, interaction_id: str, reason: str):
        self.interaction_id = interaction_id
        self.reason = reason
        super().__init__(f"Cannot show review panel for {interaction_id}: {reason}")


class AttachmentError(SeamlessAgentError):
    """A pasted image or file reference was rejected."""
