"""Flowpilot - streaming flow execution coordinator for AI agent turns."""

__version__ = "0.1.0"
