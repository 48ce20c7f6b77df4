"""
Seq Investigator - MCP tools for querying a Seq structured-logging server.
"""

__version__ = "0.1.0"
