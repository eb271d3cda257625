"""Incremental proposal synchronization.

Pages the governance network backward from the newest proposal and stops as
soon as it reaches proposals that are already stored. The lowest ID of the
very first page ever fetched is kept as a cutoff (``minimum_proposal_id``) so
later runs never walk old history again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from . import config_store, db
from .ballots import normalize_proposal_payload, parse_proposal_id
from .config import settings
from .events import EventType, emit
from .governance_client import GovernanceClient

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    fetched: int = 0
    new_count: int = 0
    pages: int = 0
    stop_reason: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fetched": self.fetched,
            "new_count": self.new_count,
            "pages": self.pages,
            "stop_reason": self.stop_reason,
            "error": self.error,
        }


async def store_proposal(raw: dict[str, Any]) -> bool:
    """Upsert one network proposal. Returns True if it was new."""
    payload = normalize_proposal_payload(raw)
    proposal_id = int(payload["id"])
    async with db.get_session() as session:
        _, created = await db.upsert_proposal(session, proposal_id, payload)
    return created


async def _store_page(page: list[dict[str, Any]], cutoff: int | None) -> tuple[int, int, bool, bool]:
    """Upsert a page in one session.

    Returns (stored, new, all_existed, reached_cutoff).
    """
    stored = 0
    new = 0
    all_existed = True
    reached_cutoff = False

    async with db.get_session() as session:
        for raw in page:
            try:
                proposal_id = parse_proposal_id(raw.get("id"))
            except ValueError:
                logger.warning("Skipping proposal without a usable id: %r", raw.get("id"))
                continue

            if cutoff is not None and proposal_id <= cutoff:
                logger.info("Reached minimum proposal ID (%s). Stopping retrieval.", cutoff)
                reached_cutoff = True
                break

            _, created = await db.upsert_proposal(
                session, proposal_id, normalize_proposal_payload(raw)
            )
            stored += 1
            if created:
                new += 1
                all_existed = False

    return stored, new, all_existed, reached_cutoff


def _page_ids(page: list[dict[str, Any]]) -> list[int]:
    ids: list[int] = []
    for raw in page:
        try:
            ids.append(parse_proposal_id(raw.get("id")))
        except ValueError:
            continue
    return ids


async def sync_new_proposals(client: GovernanceClient) -> SyncResult:
    """Pull proposals newer than what is stored. Never raises."""
    result = SyncResult()
    start = time.monotonic()

    try:
        cutoff = await config_store.get_minimum_proposal_id()
        if cutoff is not None:
            logger.info("Found existing minimum proposal ID %s; fetching newer proposals only", cutoff)

        before_id: int | None = None
        while True:
            page = await client.list_proposals(
                before_id=before_id, limit=settings.sync_page_size, omit_large_fields=True
            )
            result.pages += 1
            logger.debug("Batch %d: retrieved %d proposals", result.pages, len(page))

            if not page:
                result.stop_reason = "empty_page"
                break

            stored, new, all_existed, reached_cutoff = await _store_page(page, cutoff)
            result.fetched += stored
            result.new_count += new

            ids = _page_ids(page)
            if cutoff is None and result.pages == 1 and ids:
                first_page_min = min(ids)
                if await config_store.update_minimum_proposal_id(first_page_min):
                    logger.info("Set minimum proposal ID to %s", first_page_min)

            if reached_cutoff:
                result.stop_reason = "cutoff"
                break
            if all_existed:
                result.stop_reason = "known_proposals"
                break
            if not ids:
                result.stop_reason = "no_ids"
                break
            if result.pages >= settings.sync_max_pages:
                logger.warning(
                    "Reached batch limit (%d). Stopping retrieval.", settings.sync_max_pages
                )
                result.stop_reason = "page_limit"
                break

            before_id = min(ids)
    except Exception as exc:
        logger.exception("Error retrieving proposals")
        result.error = str(exc) or exc.__class__.__name__
        result.stop_reason = "error"

    elapsed_ms = int((time.monotonic() - start) * 1000)
    await emit(
        EventType.SYNC_COMPLETED,
        message=(
            f"Synced {result.fetched} proposals ({result.new_count} new) "
            f"in {result.pages} pages: {result.stop_reason}"
        ),
        data=result.to_dict(),
        duration_ms=elapsed_ms,
    )
    return result


async def refresh_latest_proposals(client: GovernanceClient) -> int:
    """Store any unknown proposals from the newest page. Returns how many were added."""
    try:
        page = await client.list_proposals(
            before_id=None, limit=settings.sync_page_size, omit_large_fields=False
        )
        added = 0
        for raw in page:
            try:
                proposal_id = parse_proposal_id(raw.get("id"))
            except ValueError:
                continue
            async with db.get_session() as session:
                existing = await db.get_proposal(session, proposal_id)
                if existing is not None and not existing.placeholder:
                    continue
                await db.upsert_proposal(session, proposal_id, normalize_proposal_payload(raw))
            added += 1
        logger.info("Stored %d new proposals from the latest page", added)
        return added
    except Exception:
        logger.exception("Error refreshing latest proposals")
        return 0
