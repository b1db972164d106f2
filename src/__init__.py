# src/__init__.py - v1
"""bulkdoc: bulk document generation from a template and a record source."""

from bulkdoc.version import __version__

__all__ = ["__version__"]
