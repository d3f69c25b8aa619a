"""
Routers package for FastAPI endpoints.

Organized by domain:
- projects: Projects and column management
- documents: Document registration, processing and extracted values
- collections: Collection membership and aggregation
"""

from . import collections, documents, projects

__all__ = ["collections", "documents", "projects"]
