"""
Services package for the document extraction pipeline.

Contains:
- content_router: content-kind classification
- content_source: fetching document bytes
- text_extraction: ordered text-extraction strategies
- ai: completion service and field extraction client
- processing: per-document state machine and worker
- aggregation: collections and value aggregation
- columns / documents: column lifecycle and field writes
- audit: audit sink
"""

from .processing import DocumentProcessor, get_document_processor
from .text_extraction import TextExtractor

__all__ = ["DocumentProcessor", "TextExtractor", "get_document_processor"]
