"""Core layer: domain model and protocols (no I/O)."""
