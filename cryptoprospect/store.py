"""Persistence gateway: read-all and upsert-all against the prospects and pipeline tables."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from cryptoprospect.models import PipelineEntry, PipelineStatus, Prospect
from cryptoprospect.utils import utc_now

log = logging.getLogger(__name__)

PIPELINE_UPDATABLE_FIELDS = ("notes", "contacted_at", "follow_up_at", "estimated_value", "revenue")


def read_prospects(session: Session) -> list[Prospect]:
    """All prospects, highest pain score first."""
    return list(session.execute(
        select(Prospect).order_by(Prospect.pain_score.desc(), Prospect.id)
    ).scalars().all())


def get_prospect(session: Session, prospect_id: str) -> Prospect | None:
    return session.get(Prospect, prospect_id)


def upsert_prospects(session: Session, prospects: Iterable[Prospect]) -> int:
    """Insert or fully overwrite each prospect by id, in one commit."""
    count = 0
    for prospect in prospects:
        session.merge(prospect)
        count += 1
    session.commit()
    log.info("Upserted %d prospects", count)
    return count


def read_pipeline(session: Session, status: str | None = None) -> list[PipelineEntry]:
    query = select(PipelineEntry).order_by(PipelineEntry.updated_at.desc())
    if status:
        query = query.where(PipelineEntry.status == status)
    return list(session.execute(query).scalars().all())


def get_pipeline_entry(session: Session, prospect_id: str) -> PipelineEntry | None:
    return session.get(PipelineEntry, prospect_id)


def upsert_pipeline_entry(session: Session, prospect_id: str, updates: dict[str, Any]) -> PipelineEntry:
    """Create or update the pipeline entry for a prospect (caller must commit).

    Only non-None fields in ``updates`` are applied. A status that is present but
    not a known stage becomes Uncontacted; a new entry starts as Uncontacted.
    """
    entry = get_pipeline_entry(session, prospect_id)
    if entry is None:
        entry = PipelineEntry(prospect_id=prospect_id, status=PipelineStatus.UNCONTACTED.value)
        session.add(entry)

    if updates.get("status") is not None:
        entry.status = PipelineStatus.coerce(updates["status"]).value
    for field in PIPELINE_UPDATABLE_FIELDS:
        value = updates.get(field)
        if value is not None:
            setattr(entry, field, value)
    entry.updated_at = utc_now()
    return entry
