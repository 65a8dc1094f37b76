"""Domain model for flow execution."""
