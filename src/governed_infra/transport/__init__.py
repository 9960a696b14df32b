"""Network transports for the tool server."""
