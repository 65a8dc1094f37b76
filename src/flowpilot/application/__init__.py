"""Application layer: coordinator, modes, coalescing, wiring."""
