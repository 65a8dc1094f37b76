"""Infrastructure adapters (transport, stream decoding)."""
