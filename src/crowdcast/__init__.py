"""crowdcast - community prediction markets with X-driven auto-resolution."""

__version__ = "0.1.0"
