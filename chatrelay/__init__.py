"""chatrelay - OpenAI-compatible gateway over heterogeneous upstream providers."""

__version__ = "0.1.0"
