"""Tests for AI field extraction, response validation and value normalization."""

import json
from unittest.mock import MagicMock

import httpx
import pytest
from conftest import FakeCompletionService, extractions_json
from openai import APIConnectionError, APIStatusError, APITimeoutError

from docgrid.backend.models import ColumnDefinition, ColumnType, ExtractionMethod, ValueStatus
from docgrid.backend.services.ai import (
    CompletionRequest,
    FieldExtractionClient,
    OpenAICompletionService,
    build_extraction_prompt,
    normalize_value,
    parse_date,
    parse_extraction_response,
    parse_price,
    truncate_text,
)
from docgrid.backend.services.ai.extraction import TRUNCATION_MARKER
from docgrid.backend.services.content_router import ContentKind
from docgrid.backend.services.exceptions import (
    AIServiceError,
    ErrorCode,
    MalformedResponseError,
    TransientNetworkError,
)

COLUMNS = [
    ColumnDefinition(id="invoice_date", name="Invoice Date", prompt="extract the invoice date", type=ColumnType.DATE),
    ColumnDefinition(id="total", name="Total", prompt="the total amount due", type=ColumnType.PRICE),
    ColumnDefinition(id="vendor", name="Vendor", prompt="issuing organization", type=ColumnType.ORGANIZATION),
]


class TestParseDate:
    """Tests for date normalization."""

    def test_iso_format(self):
        assert parse_date("2024-01-15") == "2024-01-15"

    def test_iso_inside_longer_string(self):
        assert parse_date("Invoice dated 2024-01-15 (due in 30 days)") == "2024-01-15"

    def test_us_format(self):
        assert parse_date("01/15/2024") == "2024-01-15"

    def test_european_format_when_month_slot_is_invalid(self):
        assert parse_date("15/01/2024") == "2024-01-15"

    def test_written_format(self):
        assert parse_date("January 15, 2024") == "2024-01-15"

    def test_invalid_returns_none(self):
        assert parse_date(None) is None
        assert parse_date("") is None
        assert parse_date("not a date at all") is None
        assert parse_date("2024-13-45") is None


class TestParsePrice:
    """Tests for price normalization."""

    def test_usd_with_thousands_separator(self):
        assert parse_price("$1,250.00") == "$1250.00"

    def test_euro_format(self):
        assert parse_price("€1.234,56") == "€1234.56"

    def test_plain_number(self):
        assert parse_price("99.5") == "99.50"

    def test_no_amount_returns_none(self):
        assert parse_price("") is None
        assert parse_price("free of charge") is None


class TestNormalizeValue:
    def test_unparseable_values_kept_raw(self):
        assert normalize_value("sometime next week", ColumnType.DATE) == "sometime next week"
        assert normalize_value("priceless", ColumnType.PRICE) == "priceless"

    def test_other_types_untouched(self):
        assert normalize_value("Acme Corp", ColumnType.ORGANIZATION) == "Acme Corp"

    def test_empty_value_untouched(self):
        assert normalize_value("", ColumnType.DATE) == ""


class TestPromptConstruction:
    def test_every_column_listed(self):
        prompt = build_extraction_prompt(COLUMNS, text="hello")
        for column in COLUMNS:
            assert f"- id: {column.id} | name: {column.name} | type: {column.type.value}" in prompt
        assert "## Document Text:\nhello" in prompt

    def test_visual_prompt_has_no_text_section(self):
        prompt = build_extraction_prompt(COLUMNS)
        assert "## Document Text:" not in prompt
        assert "attached document image" in prompt

    def test_text_truncated_with_marker(self):
        prompt = build_extraction_prompt(COLUMNS, text="a" * 100, max_chars=10)
        assert "a" * 10 + TRUNCATION_MARKER in prompt
        assert "a" * 11 not in prompt

    def test_truncate_text_keeps_short_text(self):
        assert truncate_text("short", 10) == "short"


class TestParseExtractionResponse:
    """Tests for response validation."""

    def test_valid_response(self):
        content = extractions_json([("invoice_date", "2024-01-15", 0.9), ("total", "$10", 0.7)])
        parsed = parse_extraction_response(content, ["invoice_date", "total", "vendor"])
        assert parsed == {"invoice_date": ("2024-01-15", 0.9), "total": ("$10", 0.7)}

    def test_unknown_columns_ignored(self):
        content = extractions_json([("invoice_date", "2024-01-15", 0.9), ("made_up", "x", 1.0)])
        assert set(parse_extraction_response(content, ["invoice_date"])) == {"invoice_date"}

    def test_first_duplicate_wins(self):
        content = extractions_json([("vendor", "Acme", 0.9), ("vendor", "Globex", 0.8)])
        assert parse_extraction_response(content, ["vendor"])["vendor"] == ("Acme", 0.9)

    def test_confidence_clamped_and_values_stringified(self):
        content = json.dumps(
            {
                "extractions": [
                    {"columnId": "total", "value": 1250, "confidence": 4},
                    {"column_id": "vendor", "value": None, "confidence": "sure"},
                ]
            }
        )
        parsed = parse_extraction_response(content, ["total", "vendor"])
        assert parsed["total"] == ("1250", 1.0)
        assert parsed["vendor"] == ("", 0.0)

    def test_bare_list_accepted(self):
        content = json.dumps([{"columnId": "vendor", "value": "Acme", "confidence": 0.5}])
        assert parse_extraction_response(content, ["vendor"]) == {"vendor": ("Acme", 0.5)}

    @pytest.mark.parametrize(
        "content",
        [None, "", "   ", "not json", '{"results": []}', '{"extractions": "none"}', "42"],
    )
    def test_malformed_bodies_raise(self, content):
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_extraction_response(content, ["vendor"])
        assert exc_info.value.code == ErrorCode.MALFORMED_RESPONSE


class TestFieldExtractionClient:
    """Tests for the extraction client."""

    def _client(self, completion: FakeCompletionService) -> FieldExtractionClient:
        return FieldExtractionClient(completion, model="gpt-4o", max_prompt_chars=15000)

    def test_one_call_covers_every_column(self):
        completion = FakeCompletionService(
            extractions_json(
                [
                    ("invoice_date", "2024-01-15", 0.92),
                    ("total", "$1,250.00", 0.88),
                    ("vendor", "Acme Corp", 0.95),
                ]
            )
        )

        result = self._client(completion).extract(COLUMNS, ContentKind.PDF, text="Invoice text")

        assert len(completion.requests) == 1
        assert set(result.values) == {"invoice_date", "total", "vendor"}
        assert result.values["invoice_date"].value == "2024-01-15"
        assert result.values["total"].value == "$1250.00"
        assert result.values["vendor"].confidence == 0.95
        assert result.extracted_count == 3
        assert result.malformed is False

    def test_provenance_for_text_path(self):
        completion = FakeCompletionService(extractions_json([("vendor", "Acme", 0.9)]))

        value = self._client(completion).extract(COLUMNS, ContentKind.PDF, text="x").values["vendor"]

        assert value.extracted_by.method == ExtractionMethod.AI
        assert value.extracted_by.model == "gpt-4o"
        assert value.extracted_by.version == "text-extraction-v1"
        assert value.status == ValueStatus.YES
        assert value.type == ColumnType.ORGANIZATION

    def test_missing_columns_are_empty(self):
        completion = FakeCompletionService(extractions_json([("vendor", "Acme", 0.9)]))

        result = self._client(completion).extract(COLUMNS, ContentKind.PDF, text="x")

        missing = result.values["invoice_date"]
        assert missing.value == ""
        assert missing.confidence == 0.0
        assert missing.status is None
        assert result.extracted_count == 1

    def test_visual_request_attaches_image(self):
        completion = FakeCompletionService(extractions_json([("vendor", "Acme", 0.9)]))

        result = self._client(completion).extract(
            COLUMNS, ContentKind.IMAGE, image_url="data:image/png;base64,AAAA"
        )

        request = completion.requests[0]
        assert request.image_url == "data:image/png;base64,AAAA"
        assert "## Document Text:" not in request.user_prompt
        assert result.values["vendor"].extracted_by.version == "vision-api-v1"

    def test_text_request_carries_no_image(self):
        completion = FakeCompletionService(extractions_json([]))
        self._client(completion).extract(COLUMNS, ContentKind.PDF, text="x", image_url="ignored")
        assert completion.requests[0].image_url is None

    def test_malformed_response_zeroes_every_column(self):
        completion = FakeCompletionService("I could not find anything, sorry!")

        result = self._client(completion).extract(COLUMNS, ContentKind.PDF, text="x")

        assert result.malformed is True
        assert result.error
        assert all(v.value == "" and v.confidence == 0.0 for v in result.values.values())
        assert set(result.values) == {"invoice_date", "total", "vendor"}

    def test_transient_errors_propagate(self):
        completion = FakeCompletionService(error=TransientNetworkError("timed out"))
        with pytest.raises(TransientNetworkError):
            self._client(completion).extract(COLUMNS, ContentKind.PDF, text="x")

    def test_unexpected_errors_become_ai_service_errors(self):
        completion = FakeCompletionService(error=RuntimeError("boom"))
        with pytest.raises(AIServiceError) as exc_info:
            self._client(completion).extract(COLUMNS, ContentKind.PDF, text="x")
        assert exc_info.value.code == ErrorCode.AI_SERVICE_ERROR


class TestOpenAICompletionService:
    """Tests for the OpenAI-backed completion service."""

    REQUEST = CompletionRequest(system_prompt="system", user_prompt="user")

    def _service(self, **create_kwargs) -> OpenAICompletionService:
        service = OpenAICompletionService(api_key="test-key", timeout=5.0)
        service._client = MagicMock()
        service._client.chat.completions.create = MagicMock(**create_kwargs)
        return service

    def _http_request(self) -> httpx.Request:
        return httpx.Request("POST", "https://api.openai.com/v1/chat/completions")

    def test_returns_message_content(self):
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content='{"extractions": []}'))]
        service = self._service(return_value=response)

        assert service.complete(self.REQUEST) == '{"extractions": []}'

        kwargs = service._client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    def test_image_url_added_to_user_message(self):
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content="{}"))]
        service = self._service(return_value=response)

        service.complete(
            CompletionRequest(system_prompt="s", user_prompt="u", image_url="data:image/png;base64,AAAA")
        )

        user_content = service._client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert user_content[1]["image_url"]["url"] == "data:image/png;base64,AAAA"

    def test_empty_choices_return_empty_string(self):
        response = MagicMock()
        response.choices = []
        assert self._service(return_value=response).complete(self.REQUEST) == ""

    def test_timeout_maps_to_transient_error(self):
        service = self._service(side_effect=APITimeoutError(request=self._http_request()))
        with pytest.raises(TransientNetworkError) as exc_info:
            service.complete(self.REQUEST)
        assert exc_info.value.code == ErrorCode.TRANSIENT_NETWORK_ERROR

    def test_connection_error_maps_to_transient_error(self):
        service = self._service(side_effect=APIConnectionError(request=self._http_request()))
        with pytest.raises(TransientNetworkError):
            service.complete(self.REQUEST)

    def test_status_error_maps_to_ai_service_error(self):
        response = httpx.Response(429, request=self._http_request())
        service = self._service(
            side_effect=APIStatusError("Rate limit reached", response=response, body=None)
        )
        with pytest.raises(AIServiceError) as exc_info:
            service.complete(self.REQUEST)
        assert "429" in exc_info.value.message

    def test_missing_api_key_raises_on_use(self):
        service = OpenAICompletionService(api_key="")
        with pytest.raises(AIServiceError):
            service.complete(self.REQUEST)
