"""
Document Extraction Backend Application.

A FastAPI service that routes uploaded documents by content kind, extracts
their text, asks an AI completion service for structured column values and
merges those values across document collections.
"""

__version__ = "1.0.0"
