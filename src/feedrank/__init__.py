"""Personalization and engagement-scoring core for an aggregated content feed."""

__version__ = "0.1.0"
