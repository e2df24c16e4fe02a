"""Parsing module for the descriptor schema DSL."""

from typed_cache.parsing.schema_parser import SchemaParser

__all__ = [
    "SchemaParser",
]
