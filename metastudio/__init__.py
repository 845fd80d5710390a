"""Metadata Studio: metadata resolution & lineage engine."""

__version__ = "1.0.0"
