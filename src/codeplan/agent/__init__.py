"""Step execution against the reasoning service."""
