"""Standard pack conformance checking."""
