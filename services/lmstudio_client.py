"""HTTP client for the chat completions endpoint of a local LM Studio server."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
MODELS_PATH = "/v1/models"

# Sampling fields the OpenAI-compatible endpoint accepts alongside the messages.
SAMPLING_FIELDS = ("temperature", "top_p", "max_tokens", "stop", "seed")


class LMStudioClientError(RuntimeError):
    """Raised when LM Studio is unreachable or answers with an HTTP error."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _normalise_base_url(base_url: str) -> str:
    url = (base_url or "").strip() or "http://127.0.0.1:1234"
    if "://" not in url:
        url = f"http://{url}"
    return url.rstrip("/")


def _assistant_text(body: Dict[str, Any]) -> str:
    for choice in body.get("choices") or []:
        if not isinstance(choice, dict):
            continue
        message = choice.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
        if isinstance(choice.get("text"), str):
            return choice["text"]
    return ""


class LMStudioClient:
    """Session-backed caller for LM Studio's OpenAI-compatible API.

    Only two endpoints are used: chat completions with an optional
    ``response_format`` and the model listing used to check the server is up.
    """

    def __init__(
        self,
        *,
        base_url: str = "http://127.0.0.1:1234",
        timeout: int = 120,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = _normalise_base_url(base_url)
        self.timeout = timeout
        self._auth = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._session = session or requests.Session()

    def _call(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", **self._auth}
        try:
            response = self._session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                json=body,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            failed = exc.response
            detail = failed.text if failed is not None else str(exc)
            raise LMStudioClientError(
                f"{method} {path} failed: {detail}",
                status_code=failed.status_code if failed is not None else None,
            ) from exc
        except requests.RequestException as exc:
            raise LMStudioClientError(f"{method} {path} failed: {exc}") from exc
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise LMStudioClientError(f"{method} {path} returned invalid JSON") from exc
        return data if isinstance(data, dict) else {}

    def chat_completion(
        self,
        model: str,
        messages: Sequence[Dict[str, str]],
        *,
        response_format: Optional[Dict[str, Any]] = None,
        sampling: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Run one non-streaming chat turn and return the assistant text."""

        body: Dict[str, Any] = {"model": model, "messages": list(messages), "stream": False}
        for key, value in (sampling or {}).items():
            if key in SAMPLING_FIELDS:
                body[key] = value
            else:
                logger.debug("Dropping unsupported sampling field %s", key)
        if response_format:
            body["response_format"] = response_format
        return _assistant_text(self._call("POST", CHAT_COMPLETIONS_PATH, body))

    def list_models(self) -> List[str]:
        data = self._call("GET", MODELS_PATH)
        return [entry["id"] for entry in data.get("data") or [] if isinstance(entry, dict) and entry.get("id")]

    def close(self) -> None:
        self._session.close()
