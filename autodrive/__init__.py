"""LLM-driven decision core for a simulated target-seeking vehicle."""

__version__ = "0.1.0"
