"""Per-client bandwidth limiting daemon built on Linux tc."""
