# inflight/__init__.py
"""
inflight: background AI jobs that survive reloads.

Durable job records, resumable partial output and busy-state tracking for
long-running generations, exposed over MCP, HTTP and a CLI.
"""

__version__ = "0.1.0"
