"""Blocklist storage: file models and the source registry."""

from .models import BlocklistEntry, BlocklistSource, ValidationResult
from .registry import ParsedBlocklist, SourceRegistry, parse_blocklist

__all__ = [
    "BlocklistEntry",
    "BlocklistSource",
    "ParsedBlocklist",
    "SourceRegistry",
    "ValidationResult",
    "parse_blocklist",
]
