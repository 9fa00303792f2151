"""Keeps Meilisearch indexes in sync with the relational store."""

__version__ = "1.0.0"
