"""Proposal payload ingestion: JSON-safe conversion, ballot normalization, eligibility."""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from .config import settings


@dataclass(frozen=True)
class Ballot:
    """A neuron's vote record on a proposal."""

    neuron_id: str
    vote: int = 0
    voting_power: str = "0"

    def to_dict(self) -> dict[str, Any]:
        return {"vote": self.vote, "voting_power": self.voting_power}


def parse_proposal_id(value: Any) -> int:
    """Coerce a network proposal id (int, numeric string, or ``{"id": ...}``) to int."""
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid proposal id: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"Invalid proposal id: {value!r}")
    return int(text)


def to_json_safe(value: Any) -> Any:
    """Recursively convert a network payload into plain JSON types."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return to_json_safe(value.value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_safe(v) for v in value]
    return str(value)


def _ballot_from_record(neuron_id: Any, record: Any) -> Ballot | None:
    if neuron_id is None or neuron_id == "":
        return None
    vote = 0
    voting_power = "0"
    if isinstance(record, dict):
        raw_vote = record.get("vote", 0)
        try:
            vote = int(raw_vote)
        except (TypeError, ValueError):
            vote = 0
        power = record.get("voting_power", record.get("votingPower", 0))
        voting_power = str(power if power is not None else 0)
    return Ballot(neuron_id=str(neuron_id), vote=vote, voting_power=voting_power)


def normalize_ballots(raw: Any) -> dict[str, Ballot]:
    """Normalize either ballot representation into ``{neuron_id: Ballot}``.

    Accepted shapes:
      - mapping keyed by neuron id: ``{"123": {"vote": 1, ...}}``
      - list of records: ``[{"neuronId": 123, "vote": 1, ...}]``
    """
    ballots: dict[str, Ballot] = {}
    if isinstance(raw, dict):
        for neuron_id, record in raw.items():
            ballot = _ballot_from_record(neuron_id, record)
            if ballot:
                ballots[ballot.neuron_id] = ballot
    elif isinstance(raw, (list, tuple)):
        for record in raw:
            if not isinstance(record, dict):
                continue
            neuron_id = record.get("neuronId", record.get("neuron_id"))
            if isinstance(neuron_id, dict):
                neuron_id = neuron_id.get("id")
            ballot = _ballot_from_record(neuron_id, record)
            if ballot:
                ballots[ballot.neuron_id] = ballot
    return ballots


def normalize_proposal_payload(raw: dict[str, Any]) -> dict[str, Any]:
    """Prepare a network proposal for storage."""
    payload = to_json_safe(raw)
    if not isinstance(payload, dict):
        raise ValueError("Proposal payload must be a mapping")

    payload["id"] = str(parse_proposal_id(payload.get("id")))
    payload["ballots"] = {
        neuron_id: ballot.to_dict()
        for neuron_id, ballot in normalize_ballots(payload.get("ballots")).items()
    }
    payload.pop("placeholder", None)
    return payload


def placeholder_payload(proposal_id: int, now: int | None = None) -> dict[str, Any]:
    """Minimal stand-in stored when a proposal is referenced before it can be fetched."""
    return {
        "id": str(proposal_id),
        "placeholder": True,
        "status": 0,
        "topic": 0,
        "proposalTimestampSeconds": now if now is not None else int(time.time()),
        "ballots": {},
        "proposal": {
            "title": f"Proposal {proposal_id} (Placeholder)",
            "summary": (
                "This is a placeholder entry for a proposal that was referenced "
                "but couldn't be fetched from the governance network."
            ),
        },
    }


def voting_deadline(payload: dict[str, Any]) -> int | None:
    raw = payload.get("proposalTimestampSeconds")
    try:
        started = int(raw)
    except (TypeError, ValueError):
        return None
    return started + settings.voting_period_seconds


def is_eligible(payload: dict[str, Any], neuron_id: int | str, now: int | None = None) -> bool:
    """True when the neuron holds a ballot and the voting window is still open."""
    if str(neuron_id) not in normalize_ballots(payload.get("ballots")):
        return False
    deadline = voting_deadline(payload)
    if deadline is None:
        return False
    current = now if now is not None else int(time.time())
    return current < deadline
