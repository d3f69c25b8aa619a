"""
Field extraction from document text or visual content.

One completion call per processing attempt covers every enabled column.
The response must look like:

    {"extractions": [{"columnId": "...", "value": "...", "confidence": 0.9}, ...]}

A response that cannot be parsed is absorbed: every requested column gets
an empty value with zero confidence and the batch is flagged as malformed.
"""

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ...config import get_settings
from ...models import (
    ColumnDefinition,
    ExtractedBy,
    ExtractedValue,
    ExtractionMethod,
    ValueStatus,
    clamp_confidence,
)
from ..content_router import ContentKind, provenance_version
from ..exceptions import AIServiceError, MalformedResponseError, PipelineError
from .completion import CompletionRequest, CompletionService
from .normalization import normalize_value

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n...(truncated)"


# =============================================================================
# Extraction System Prompt
# =============================================================================

EXTRACTION_SYSTEM_PROMPT = """You are a precise document data extraction assistant.
Your task is to extract specific fields from a document AND estimate your confidence for each field.

## Extraction Rules:

1. **Strict Adherence**: Only extract the columns listed. Use each column's id exactly as given.
2. **Accuracy Over Guessing**: If a value is unclear or not present, return an empty string. DO NOT HALLUCINATE.
3. **Follow Column Instructions**: Each column carries its own instruction; follow it.
4. **Dates**: Prefer ISO format (YYYY-MM-DD) when the date is unambiguous.
5. **Prices**: Include the currency symbol or code if visible.

## Confidence Scoring:
For EVERY column provide a confidence score (0.0 to 1.0):
- 1.0: Perfectly clear, no ambiguity
- 0.5-0.99: Value found with some uncertainty
- 0.1-0.49: Low confidence, significant guessing
- 0.0: Not found, value is an empty string

Return ONLY a JSON object of the form:
{"extractions": [{"columnId": "<id>", "value": "<string>", "confidence": <0.0-1.0>}]}"""


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class FieldExtractionResult:
    """Values for every requested column from one completion call."""

    values: dict[str, ExtractedValue] = field(default_factory=dict)
    malformed: bool = False
    error: str | None = None

    @property
    def extracted_count(self) -> int:
        return sum(1 for v in self.values.values() if not v.is_empty)


# =============================================================================
# Helper Functions
# =============================================================================


def truncate_text(text: str, limit: int) -> str:
    """Truncate `text` to `limit` characters, appending an explicit marker."""
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def build_extraction_prompt(
    columns: Sequence[ColumnDefinition],
    text: str | None = None,
    max_chars: int = 15000,
) -> str:
    """
    Build the user prompt listing every column and, for text input, the text.

    Args:
        columns: Enabled columns to extract.
        text: Document text, or None when visual content is attached.
        max_chars: Character budget for the document text.

    Returns:
        The prompt string.
    """
    column_lines = [
        f"- id: {c.id} | name: {c.name} | type: {c.type.value} | instruction: {c.prompt or c.name}"
        for c in columns
    ]
    column_ids = [c.id for c in columns]

    if text is not None:
        source = (
            "Extract the following columns from this document text.\n\n"
            "## Document Text:\n"
            f"{truncate_text(text, max_chars)}"
        )
    else:
        source = "Extract the following columns from the attached document image."

    return f"""{source}

## Columns to Extract:
{chr(10).join(column_lines)}

## Response Format (MUST follow this exact structure):
{{"extractions": [{{"columnId": "{column_ids[0] if column_ids else 'column_id'}", "value": "extracted value or empty string", "confidence": 0.95}}, ...]}}

Return exactly one entry per column id: {json.dumps(column_ids)}"""


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def parse_extraction_response(
    content: str | None,
    column_ids: Sequence[str],
) -> dict[str, tuple[str, float]]:
    """
    Parse and validate a completion body.

    Entries for unknown column ids are ignored; for duplicates the first
    entry wins. Requested columns missing from the response are not filled
    here.

    Args:
        content: Raw response text.
        column_ids: Requested column ids.

    Returns:
        Mapping column id -> (value, clamped confidence).

    Raises:
        MalformedResponseError: If the body is empty, not JSON, or not the
            expected structure.
    """
    if content is None or not content.strip():
        raise MalformedResponseError("Empty response from AI service")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse extraction response: %s", content[:500])
        raise MalformedResponseError(f"Invalid JSON in extraction response: {e}") from e

    if isinstance(data, dict):
        entries = data.get("extractions")
    elif isinstance(data, list):
        entries = data
    else:
        entries = None
    if not isinstance(entries, list):
        logger.error("Extraction response has no extractions array: %s", content[:500])
        raise MalformedResponseError("Extraction response has no 'extractions' array")

    requested = set(column_ids)
    parsed: dict[str, tuple[str, float]] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        column_id = entry.get("columnId", entry.get("column_id"))
        if not isinstance(column_id, str) or column_id not in requested:
            if column_id is not None:
                logger.debug("Ignoring extraction for unrequested column %r", column_id)
            continue
        if column_id in parsed:
            continue
        parsed[column_id] = (
            _stringify(entry.get("value")),
            clamp_confidence(entry.get("confidence", 0.0)),
        )
    return parsed


# =============================================================================
# Client
# =============================================================================


class FieldExtractionClient:
    """
    Issues one completion request per processing attempt and validates it.

    Produces an ExtractedValue for every requested column, with provenance
    naming the model and the content path.
    """

    def __init__(
        self,
        completion_service: CompletionService,
        model: str | None = None,
        max_prompt_chars: int | None = None,
    ):
        settings = get_settings()
        self.completion_service = completion_service
        self.model = model or settings.ai_model
        self.max_prompt_chars = max_prompt_chars or settings.max_prompt_chars
        self.temperature = settings.ai_temperature
        self.max_tokens = settings.ai_max_tokens

    def extract(
        self,
        columns: Sequence[ColumnDefinition],
        content_kind: ContentKind,
        text: str | None = None,
        image_url: str | None = None,
    ) -> FieldExtractionResult:
        """
        Extract every column from text or visual content.

        Args:
            columns: Enabled columns (must be non-empty).
            content_kind: Path the document was routed to; sets provenance.
            text: Document text for the pdf path.
            image_url: Visual content for the image/unknown path.

        Returns:
            FieldExtractionResult with one value per column.

        Raises:
            TransientNetworkError: If the call produced no response at all.
            AIServiceError: If the service rejected the call.
        """
        request = CompletionRequest(
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
            user_prompt=build_extraction_prompt(columns, text=text, max_chars=self.max_prompt_chars),
            image_url=image_url if text is None else None,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        logger.info(
            "Extracting %d column(s) via %s path (%s)",
            len(columns),
            content_kind.value,
            "text" if text is not None else "visual",
        )

        try:
            content = self.completion_service.complete(request)
        except PipelineError:
            raise
        except Exception as e:
            logger.exception("AI completion call failed")
            raise AIServiceError(f"AI completion call failed: {e}") from e

        column_ids = [c.id for c in columns]
        malformed = False
        error: str | None = None
        try:
            parsed = parse_extraction_response(content, column_ids)
        except MalformedResponseError as e:
            logger.warning("Malformed extraction response, zeroing %d column(s): %s", len(columns), e)
            parsed = {}
            malformed = True
            error = str(e)

        extracted_at = datetime.utcnow()
        provenance = ExtractedBy(
            method=ExtractionMethod.AI,
            model=self.model,
            version=provenance_version(content_kind),
        )

        values: dict[str, ExtractedValue] = {}
        for column in columns:
            raw_value, confidence = parsed.get(column.id, ("", 0.0))
            value = normalize_value(raw_value, column.type)
            values[column.id] = ExtractedValue(
                value=value,
                type=column.type,
                status=ValueStatus.YES if value else None,
                confidence=confidence,
                extracted_at=extracted_at,
                extracted_by=provenance,
            )

        result = FieldExtractionResult(values=values, malformed=malformed, error=error)
        logger.info(
            "Extraction finished: %d/%d column(s) with values%s",
            result.extracted_count,
            len(columns),
            " (malformed response)" if malformed else "",
        )
        return result
