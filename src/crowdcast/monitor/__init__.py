"""X condition monitoring and market auto-resolution."""
