"""Run lifecycle tracking and LLM invocation core."""

__version__ = "0.1.0"
