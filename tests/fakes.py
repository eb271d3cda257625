"""Fake governance network and reasoning service for tests."""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any

from neuronvote.governance_client import Neuron
from neuronvote.models import Vote
from neuronvote.reasoning_client import ReviewResponse, parse_review

NEURON_ID = 77


class FakeGovernance:
    """In-memory governance network."""

    def __init__(self, proposals: list[dict[str, Any]] | None = None) -> None:
        self.proposals: dict[int, dict[str, Any]] = {int(p["id"]): p for p in proposals or []}
        self.neurons: list[Neuron] = [
            Neuron(neuron_id=NEURON_ID, stake_e8s=100_000_000, dissolve_delay_seconds=0)
        ]
        self.votes: list[tuple[int, int, Vote]] = []
        self.vote_errors: dict[int, Exception] = {}
        self.vote_delay: float = 0.0
        self.on_vote: Callable[[int], Awaitable[None]] | None = None
        self.list_error: Exception | None = None
        self.list_calls: list[int | None] = []
        self.dissolve_increases: list[tuple[int, int]] = []

    def add(self, *proposals: dict[str, Any]) -> None:
        for p in proposals:
            self.proposals[int(p["id"])] = p

    async def list_proposals(
        self, *, before_id: int | None = None, limit: int = 30, omit_large_fields: bool = True
    ) -> list[dict[str, Any]]:
        self.list_calls.append(before_id)
        if self.list_error is not None:
            raise self.list_error
        ids = sorted(self.proposals, reverse=True)
        if before_id is not None:
            ids = [i for i in ids if i < before_id]
        return [dict(self.proposals[i]) for i in ids[:limit]]

    async def get_proposal(self, proposal_id: int) -> dict[str, Any] | None:
        p = self.proposals.get(proposal_id)
        return dict(p) if p else None

    async def register_vote(self, *, neuron_id: int, proposal_id: int, vote: Vote) -> None:
        if self.vote_delay:
            await asyncio.sleep(self.vote_delay)
        if self.on_vote is not None:
            await self.on_vote(proposal_id)
        if proposal_id in self.vote_errors:
            raise self.vote_errors[proposal_id]
        self.votes.append((neuron_id, proposal_id, vote))

    async def list_neurons(self) -> list[Neuron]:
        return list(self.neurons)

    async def increase_dissolve_delay(self, *, neuron_id: int, additional_seconds: int) -> None:
        self.dissolve_increases.append((neuron_id, additional_seconds))


class FakeReasoning:
    """Reasoning service returning queued outputs (str or Exception)."""

    def __init__(self, *outputs: str | Exception) -> None:
        self.outputs = list(outputs)
        self.prompts: list[str] = []
        self.gate: asyncio.Event | None = None

    async def review(self, prompt: str) -> ReviewResponse:
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        out: str | Exception = (
            self.outputs.pop(0)
            if self.outputs
            else json.dumps({"vote_decision": "yes", "reasoning": "Looks fine."})
        )
        if isinstance(out, Exception):
            raise out
        return ReviewResponse(raw_output=out, parsed=parse_review(out))


def review_output(vote: str | None, reasoning: str = "Because.") -> str:
    return json.dumps({"vote_decision": vote, "reasoning": reasoning})


def build_proposal(
    proposal_id: int,
    *,
    title: str | None = None,
    ballots: Any = None,
    timestamp: int | None = None,
    proposer: int | None = 1234,
    summary: str = "A proposal summary.",
    action: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "id": proposal_id,
        "topic": 4,
        "status": 1,
        "proposer": proposer,
        "proposalTimestampSeconds": timestamp if timestamp is not None else int(time.time()),
        "ballots": ballots if ballots is not None else {str(NEURON_ID): {"vote": 0, "voting_power": "100"}},
        "proposal": {
            "title": title or f"Proposal {proposal_id} title",
            "summary": summary,
            "action": action,
        },
    }

