"""LLM-backed extractor turning compiled session content into order fields."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel, to_snake

from app.extraction.extractor_interface import ExtractorInterface
from app.extraction.llm_client import LLMClient, LLMExtractionError, load_prompt, parse_structured_response
from app.extraction.types import OrderExtractionResult

ORDER_EXTRACTION_PROMPT_VERSION = "order.v1"
_PROMPT_FILES: dict[str, str] = {
    "order.v1": "order_extraction_v1.txt",
}
_SYSTEM_PROMPT = "You are a shipping and logistics data extraction expert. Always respond with valid JSON only."


class _RawOrderPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    customer_name: str | None = None
    shipper_name: str | None = None
    consignee_name: str | None = None
    port_of_loading: str | None = None
    port_of_discharge: str | None = None
    estimated_departure: str | None = None
    estimated_arrival: str | None = None
    cargo_description: str | None = None
    container_numbers: list[str] = Field(default_factory=list)
    booking_reference: str | None = None
    bill_of_lading_number: str | None = None

    @field_validator(
        "customer_name",
        "shipper_name",
        "consignee_name",
        "port_of_loading",
        "port_of_discharge",
        "estimated_departure",
        "estimated_arrival",
        "cargo_description",
        "booking_reference",
        "bill_of_lading_number",
        mode="before",
    )
    @classmethod
    def _coerce_scalar(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            cleaned = " ".join(value.split())
            return cleaned or None
        return value

    @field_validator("container_numbers", mode="before")
    @classmethod
    def _coerce_container_numbers(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, list):
            return [str(item).strip() for item in value if item is not None and str(item).strip()]
        return value


class OrderExtractor(ExtractorInterface):
    """AI-powered extractor that validates structured LLM output."""

    def __init__(self, client: LLMClient, *, max_tokens: int = 1000) -> None:
        self._client = client
        self._max_tokens = max_tokens
        self._last_raw_output: dict[str, Any] | None = None

    def extract(self, document: str) -> OrderExtractionResult:
        """Extract order fields; raises ``LLMExtractionError`` on any failure."""

        self._last_raw_output = None
        if not document.strip():
            raise LLMExtractionError("Nothing to extract: compiled document is empty")

        prompt = _build_user_prompt(document, self.prompt_version)
        raw_text = self._client.complete(
            [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self._max_tokens,
        )
        raw_payload = parse_structured_response(raw_text)
        self._last_raw_output = raw_payload
        try:
            validated = _RawOrderPayload.model_validate(raw_payload)
        except ValidationError as exc:
            raise LLMExtractionError(f"Order extraction payload failed validation: {exc}") from exc

        return OrderExtractionResult(
            data=_snake_case_payload(validated),
            model_name=self.model_name,
            prompt_version=self.prompt_version,
        )

    @property
    def prompt_version(self) -> str:
        return ORDER_EXTRACTION_PROMPT_VERSION

    @property
    def model_name(self) -> str:
        return str(getattr(self._client, "model", self._client.__class__.__name__))

    @property
    def last_raw_output(self) -> dict[str, Any] | None:
        return self._last_raw_output


def _build_user_prompt(document: str, version: str) -> str:
    file_name = _PROMPT_FILES.get(version)
    if file_name is None:
        raise LLMExtractionError(f"Extraction prompt version is not registered: {version}")
    return f"{load_prompt(file_name)}\n\nContent to analyze:\n{document}"


def _snake_case_payload(validated: _RawOrderPayload) -> dict[str, Any]:
    """Dump known and extra fields with one key casing (snake_case)."""

    data = validated.model_dump(mode="json")
    for key in validated.model_extra or {}:
        value = data.pop(key)
        data.setdefault(to_snake(key), value)
    return data
