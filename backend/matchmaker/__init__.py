"""Embedding-based weekly introductions: candidates, scoring, allocation and explanations."""

__version__ = "0.1.0"
