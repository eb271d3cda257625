"""Governance network client interface and an HTTP gateway implementation."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .errors import GovernanceError
from .models import Vote


@dataclass(frozen=True)
class Neuron:
    """The voting identity's stake-weighted account."""

    neuron_id: int
    stake_e8s: int = 0
    dissolve_delay_seconds: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Neuron:
        raw_id = data.get("neuronId", data.get("neuron_id", data.get("id")))
        if isinstance(raw_id, dict):
            raw_id = raw_id.get("id")
        return cls(
            neuron_id=int(raw_id),
            stake_e8s=int(data.get("cachedNeuronStake", data.get("stake_e8s", 0)) or 0),
            dissolve_delay_seconds=int(
                data.get("dissolveDelaySeconds", data.get("dissolve_delay_seconds", 0)) or 0
            ),
        )


class GovernanceClient(Protocol):
    """What the agent needs from the governance network."""

    async def list_proposals(
        self,
        *,
        before_id: int | None = None,
        limit: int = 30,
        omit_large_fields: bool = True,
    ) -> list[dict[str, Any]]: ...

    async def get_proposal(self, proposal_id: int) -> dict[str, Any] | None: ...

    async def register_vote(self, *, neuron_id: int, proposal_id: int, vote: Vote) -> None: ...

    async def list_neurons(self) -> list[Neuron]: ...

    async def increase_dissolve_delay(self, *, neuron_id: int, additional_seconds: int) -> None: ...


def _unwrap_list(payload: Any, key: str) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and isinstance(payload.get(key), list):
        items = payload[key]
    elif isinstance(payload, dict) and isinstance(payload.get("data"), list):
        items = payload["data"]
    else:
        return []
    return [item for item in items if isinstance(item, dict)]


class HttpGovernanceClient:
    """Async client for a JSON gateway in front of the governance network."""

    def __init__(
        self,
        *,
        base_url: str,
        auth_key: str | None = None,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if auth_key:
            headers["Authorization"] = f"Bearer {auth_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpGovernanceClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: Any | None = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, params=params, json=body)
            resp.raise_for_status()
            return resp
        except httpx.RequestError as e:
            raise GovernanceError(f"Governance request failed ({method} {path}): {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            try:
                detail: Any = e.response.json()
            except json.JSONDecodeError:
                detail = e.response.text
            message = detail.get("error_message") if isinstance(detail, dict) else None
            raise GovernanceError(
                message or f"Governance API error {status} ({method} {path})",
                code=status,
                detail=detail,
            ) from e

    async def list_proposals(
        self,
        *,
        before_id: int | None = None,
        limit: int = 30,
        omit_large_fields: bool = True,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit, "omit_large_fields": str(omit_large_fields).lower()}
        if before_id is not None:
            params["before"] = str(before_id)
        resp = await self._request("GET", "/proposals", params=params)
        return _unwrap_list(resp.json(), "proposals")

    async def get_proposal(self, proposal_id: int) -> dict[str, Any] | None:
        try:
            resp = await self._request("GET", f"/proposals/{proposal_id}")
        except GovernanceError as e:
            if e.code == 404:
                return None
            raise
        payload = resp.json()
        if isinstance(payload, dict) and isinstance(payload.get("proposal"), dict):
            return payload["proposal"]
        return payload if isinstance(payload, dict) else None

    async def register_vote(self, *, neuron_id: int, proposal_id: int, vote: Vote) -> None:
        await self._request(
            "POST",
            f"/proposals/{proposal_id}/votes",
            body={"neuron_id": str(neuron_id), "vote": vote.code},
        )

    async def list_neurons(self) -> list[Neuron]:
        resp = await self._request("GET", "/neurons")
        return [Neuron.from_dict(item) for item in _unwrap_list(resp.json(), "neurons")]

    async def increase_dissolve_delay(self, *, neuron_id: int, additional_seconds: int) -> None:
        await self._request(
            "POST",
            f"/neurons/{neuron_id}/dissolve-delay",
            body={"additional_dissolve_delay_seconds": additional_seconds},
        )
