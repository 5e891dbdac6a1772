"""MCP server and binary TCP protocol client for ZK-style biometric time clocks."""

__version__ = "0.1.0"
