"""Bowl recommendation service."""
