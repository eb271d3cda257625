import pytest

from neuronvote.ballots import (
    Ballot,
    is_eligible,
    normalize_ballots,
    normalize_proposal_payload,
    parse_proposal_id,
    placeholder_payload,
)
from neuronvote.config import settings


def test_normalize_ballots_map_shape() -> None:
    ballots = normalize_ballots({"123": {"vote": 1, "voting_power": 500}, "456": {"vote": 0}})

    assert set(ballots) == {"123", "456"}
    assert ballots["123"] == Ballot(neuron_id="123", vote=1, voting_power="500")
    assert ballots["456"].voting_power == "0"


def test_normalize_ballots_list_shape() -> None:
    ballots = normalize_ballots(
        [
            {"neuronId": 123, "vote": 2, "votingPower": "900"},
            {"neuron_id": {"id": 456}, "vote": 0},
            {"vote": 1},
            "garbage",
        ]
    )

    assert set(ballots) == {"123", "456"}
    assert ballots["123"].vote == 2
    assert ballots["123"].voting_power == "900"


def test_normalize_ballots_unknown_shape_is_empty() -> None:
    assert normalize_ballots(None) == {}
    assert normalize_ballots("nope") == {}


def test_parse_proposal_id() -> None:
    assert parse_proposal_id(42) == 42
    assert parse_proposal_id(" 12345 ") == 12345
    assert parse_proposal_id({"id": "7"}) == 7
    assert parse_proposal_id(2**63 + 5) == 2**63 + 5

    for bad in (None, "", "abc", True, "-1"):
        with pytest.raises(ValueError):
            parse_proposal_id(bad)


def test_normalize_proposal_payload_stores_map_form() -> None:
    payload = normalize_proposal_payload(
        {
            "id": {"id": 99},
            "placeholder": True,
            "ballots": [{"neuronId": 5, "vote": 1, "votingPower": 10}],
            "proposal": {"title": "T", "hash": b"\x01\x02"},
        }
    )

    assert payload["id"] == "99"
    assert "placeholder" not in payload
    assert payload["ballots"] == {"5": {"vote": 1, "voting_power": "10"}}
    assert payload["proposal"]["hash"] == "0102"


def test_placeholder_payload() -> None:
    payload = placeholder_payload(999, now=1_700_000_000)

    assert payload["id"] == "999"
    assert payload["placeholder"] is True
    assert payload["proposalTimestampSeconds"] == 1_700_000_000
    assert payload["ballots"] == {}
    assert "Placeholder" in payload["proposal"]["title"]


def test_eligibility_requires_ballot_and_open_window() -> None:
    started = 1_700_000_000
    payload = {"proposalTimestampSeconds": started, "ballots": {"77": {"vote": 0}}}

    assert is_eligible(payload, 77, now=started + 60)
    assert is_eligible(payload, "77", now=started + settings.voting_period_seconds - 1)
    assert not is_eligible(payload, 77, now=started + settings.voting_period_seconds)
    assert not is_eligible(payload, 78, now=started + 60)


def test_eligibility_with_list_ballots_and_missing_timestamp() -> None:
    payload = {"ballots": [{"neuronId": 77, "vote": 0}]}
    assert not is_eligible(payload, 77, now=0)

    payload["proposalTimestampSeconds"] = "1000"
    assert is_eligible(payload, 77, now=1001)
