"""Reasoning service interface and a Responses API client with structured vote output."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .errors import ReasoningServiceError

logger = logging.getLogger(__name__)

REVIEW_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "vote_decision": {"type": "string", "enum": ["yes", "no"]},
        "reasoning": {"type": "string"},
    },
    "required": ["vote_decision", "reasoning"],
    "additionalProperties": False,
}


@dataclass(frozen=True)
class ReviewResponse:
    raw_output: str
    parsed: dict[str, Any] | None
    response_json: dict[str, Any] | None = None


class ReasoningService(Protocol):
    async def review(self, prompt: str) -> ReviewResponse: ...


def _extract_text(output: list[Any]) -> str:
    # Structured results live in message items, in parts with type == "output_text".
    texts: list[str] = []
    for item in output:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for part in item.get("content") or []:
            if isinstance(part, dict) and part.get("type") == "output_text":
                text = part.get("text")
                if isinstance(text, str):
                    texts.append(text)
    return "".join(texts).strip()


def parse_review(raw_output: str) -> dict[str, Any] | None:
    """Decode the model's JSON object, or None when it is not one."""
    if not raw_output:
        return None
    try:
        parsed = json.loads(raw_output)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class ReasoningClient:
    """Async client for an OpenAI-compatible Responses API with strict JSON output."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        timeout_seconds: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def review(self, prompt: str) -> ReviewResponse:
        """Send a prompt and return the raw and decoded structured result."""
        body = {
            "model": self._model,
            "input": prompt,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "review",
                    "strict": True,
                    "schema": REVIEW_SCHEMA,
                }
            },
        }
        try:
            resp = await self._client.post("/responses", json=body)
            resp.raise_for_status()
        except httpx.RequestError as e:
            raise ReasoningServiceError(f"Reasoning request failed: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ReasoningServiceError(
                f"Reasoning API error {e.response.status_code}: {e.response.text[:500]}"
            ) from e

        try:
            payload = resp.json()
        except json.JSONDecodeError as exc:
            raise ReasoningServiceError(
                f"Invalid JSON response from reasoning service: {resp.text[:200]}"
            ) from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("output"), list):
            raise ReasoningServiceError(f"Unexpected reasoning response: {str(payload)[:500]}")

        raw_output = _extract_text(payload["output"])
        if not raw_output:
            logger.warning(
                "Reasoning service returned empty output (status=%s)", payload.get("status")
            )

        return ReviewResponse(
            raw_output=raw_output,
            parsed=parse_review(raw_output),
            response_json=payload,
        )
