"""MCP front ends for the agent tools.

``proxy`` is a stdio server launched by an MCP client that relays every
call to the loopback bridge; ``streamable`` serves the same tools over
streamable HTTP from inside the service process.
"""
