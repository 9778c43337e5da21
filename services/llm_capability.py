"""Language capability contract used for extraction, matching and ranking.

Every natural-language step of the quote workflow goes through
:class:`LanguageCapability.complete`, which takes a prompt plus an optional
result schema and returns a plain ``dict``.  An empty dict is a legitimate
"nothing usable" answer; only transport or server failures raise
:class:`CapabilityError`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from services.lmstudio_client import LMStudioClient, LMStudioClientError

logger = logging.getLogger(__name__)


class CapabilityError(RuntimeError):
    """Raised when the capability backend cannot produce an answer."""

    def __init__(self, message: str, *, schema: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.schema = schema
        self.status_code = status_code


@dataclass(frozen=True)
class ResultSchema:
    name: str
    description: str
    json_schema: Dict[str, Any]


@dataclass(frozen=True)
class CapabilityRequest:
    """One prompt for the capability.

    ``payload`` carries the same facts as ``prompt`` in structured form for
    backends that do not read natural language.
    """

    system: str
    prompt: str
    schema: Optional[ResultSchema] = None
    payload: Dict[str, Any] = field(default_factory=dict)


PARSE_PURCHASE_REQUEST = ResultSchema(
    name="parse_purchase_request",
    description="Extract the list of items and quantities from a free-text purchase request",
    json_schema={
        "type": "object",
        "properties": {
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Item name"},
                        "qty": {"type": "number", "description": "Quantity"},
                        "unit": {"type": "string", "description": "Unit (kg, litre, unit, m2, ...)"},
                        "note": {"type": "string", "description": "Extra detail such as brand or grade, if any"},
                    },
                    "required": ["name", "qty", "unit"],
                },
            }
        },
        "required": ["items"],
    },
)

MATCH_SUPPLIERS = ResultSchema(
    name="match_suppliers",
    description="Return the ids of the suppliers best suited to provide the requested items",
    json_schema={
        "type": "object",
        "properties": {
            "matches": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "supplier_id": {"type": "string"},
                        "reason": {"type": "string"},
                    },
                    "required": ["supplier_id", "reason"],
                },
            }
        },
        "required": ["matches"],
    },
)

COMPOSE_QUOTE_MESSAGE = ResultSchema(
    name="compose_quote_message",
    description="Write the chat message asking a supplier for a quote",
    json_schema={
        "type": "object",
        "properties": {"message": {"type": "string", "description": "Complete chat message"}},
        "required": ["message"],
    },
)

COMPARE_QUOTES = ResultSchema(
    name="compare_quotes",
    description="Compare the received quotes and recommend the best option",
    json_schema={
        "type": "object",
        "properties": {
            "recommendation": {"type": "string"},
            "best_supplier": {"type": "string"},
            "total_price": {"type": "number"},
            "comparison_table": {"type": "string", "description": "Text table comparing suppliers"},
        },
        "required": ["recommendation", "best_supplier", "comparison_table"],
    },
)


class LanguageCapability:
    """Interface implemented by every capability variant."""

    def complete(self, request: CapabilityRequest) -> Dict[str, Any]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class LMStudioCapability(LanguageCapability):
    """Live variant backed by an LM Studio chat model with JSON-schema output."""

    def __init__(
        self,
        client: LMStudioClient,
        *,
        model: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._client = client
        self._model = model
        self._options = dict(options or {"temperature": 0.1})

    @classmethod
    def from_settings(cls, settings) -> "LMStudioCapability":
        client = LMStudioClient(
            base_url=settings.lmstudio_base_url,
            timeout=settings.lmstudio_timeout,
            api_key=settings.lmstudio_api_key,
        )
        return cls(client, model=settings.lmstudio_model)

    @staticmethod
    def _response_format(schema: Optional[ResultSchema]) -> Optional[Dict[str, Any]]:
        if schema is None:
            return None
        return {
            "type": "json_schema",
            "json_schema": {
                "name": schema.name,
                "schema": schema.json_schema,
                "strict": False,
            },
        }

    @staticmethod
    def _decode(content: str) -> Dict[str, Any]:
        text = (content or "").strip()
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except ValueError:
            logger.warning("Capability returned non-JSON content; treating as empty result")
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def complete(self, request: CapabilityRequest) -> Dict[str, Any]:
        messages = [
            {"role": "system", "content": request.system},
            {"role": "user", "content": request.prompt},
        ]
        schema_name = request.schema.name if request.schema else None
        try:
            content = self._client.chat_completion(
                self._model,
                messages,
                response_format=self._response_format(request.schema),
                sampling=self._options,
            )
        except LMStudioClientError as exc:
            raise CapabilityError(
                f"LM Studio call failed for {schema_name or 'prompt'}: {exc}",
                schema=schema_name,
                status_code=exc.status_code,
            ) from exc
        if request.schema is None:
            return {"text": content}
        return self._decode(content)

    def close(self) -> None:
        self._client.close()
