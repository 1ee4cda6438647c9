"""User-facing strings shared by the backend and the tool layer."""
from __future__ import annotations

CONFIRMATION_REQUIRED = "Confirmation Required"
DEFAULT_AGENT_NAME = "Agent"
PLAN_REVIEW_TITLE = "Plan Review"
WALKTHROUGH_TITLE = "Walkthrough Review"

# Returned by the broker when no console subscriber appears in time.
# The tool layer matches on it to fall back to the terminal prompt.
VIEW_UNAVAILABLE = "Agent Console view is not available."

CANCELLED = "Cancelled"
AGENT_STOPPED = "Agent stopped the request"
REQUEST_CANCELLED = "Request was cancelled"
SHUTTING_DOWN = "Seamless Agent is shutting down"

NEW_INPUT_REQUEST = "New input request from the agent: {title}"
NEW_PLAN_REVIEW = "A plan is waiting for your review: {title}"
