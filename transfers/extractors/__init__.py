"""Built-in source connectors.

Importing this package registers every bundled extractor.
"""

from transfers.extractors.sql_extractor import SqlExtractor

__all__ = ["SqlExtractor"]
