"""Seamless Agent: pause an AI coding agent to ask the human in the loop."""

__version__ = "0.4.0"
