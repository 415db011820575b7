"""Durable, resumable plan execution engine for tool-calling agents."""

__version__ = "0.1.0"
