"""
AI service package for structured field extraction.

This package provides:
- completion: the completion-service protocol and its OpenAI implementation
- extraction: prompt construction, response validation and the extraction client
- normalization: date and price normalization of extracted values
"""

from .completion import (
    CompletionRequest,
    CompletionService,
    OpenAICompletionService,
    get_completion_service,
)
from .extraction import (
    EXTRACTION_SYSTEM_PROMPT,
    FieldExtractionClient,
    FieldExtractionResult,
    build_extraction_prompt,
    parse_extraction_response,
    truncate_text,
)
from .normalization import normalize_value, parse_date, parse_price

__all__ = [
    "CompletionRequest",
    "CompletionService",
    "OpenAICompletionService",
    "get_completion_service",
    "EXTRACTION_SYSTEM_PROMPT",
    "FieldExtractionClient",
    "FieldExtractionResult",
    "build_extraction_prompt",
    "parse_extraction_response",
    "truncate_text",
    "normalize_value",
    "parse_date",
    "parse_price",
]
