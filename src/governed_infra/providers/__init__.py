"""Resource provider clients."""
