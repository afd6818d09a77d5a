"""Chain data providers."""
