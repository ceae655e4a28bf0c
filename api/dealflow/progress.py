"""Deal progress state machine.

A party's progress on a deal is a single ``PartyProgress`` row per track
whose ``stage`` only ever moves forward through the track's fixed sequence.
Handlers ask ``check_state`` whether an operation is legal, then call
``advance`` with the fixed target stage of that operation.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

import structlog
from sqlmodel import Session, select

from .errors import (
    AlreadyBuying,
    AlreadySelling,
    DealNotLive,
    DealNotLiveOrSubmitted,
    DealUnknown,
    WrongUserState,
)
from .models import Deal, PartyProgress, SigningRecord, User
from .tracks import DealState, DocKind, Track, descriptor

logger = structlog.get_logger(__name__)


class Mode(str, Enum):
    INITIATION = "initiation"
    CONTINUATION = "continuation"
    INFORMATIONAL = "informational"


class _NoProgress:
    """Sentinel for read paths where the party has not started yet."""

    def __bool__(self):
        return False

    def __repr__(self):
        return "NO_PROGRESS"


NO_PROGRESS = _NoProgress()


def load_deal(session: Session, deal_id: int) -> Deal:
    deal = session.get(Deal, deal_id)
    if not deal:
        raise DealUnknown(deal_id=deal_id)
    return deal


def require_live(deal: Deal):
    if deal.state != DealState.OPEN:
        raise DealNotLive(deal_id=deal.id)


def require_live_or_submitted(deal: Deal):
    if deal.state not in (DealState.OPEN, DealState.USER_SUBMITTED):
        raise DealNotLiveOrSubmitted(deal_id=deal.id)


def find_progress(session: Session, user_id: int, deal_id: int, track: Track) -> Optional[PartyProgress]:
    return session.exec(
        select(PartyProgress).where(
            PartyProgress.user_id == user_id,
            PartyProgress.deal_id == deal_id,
            PartyProgress.track == Track(track).value,
        )
    ).first()


def check_state(
    session: Session,
    user: User,
    deal_id: int,
    track: Track,
    min_stage: int,
    mode: Mode = Mode.CONTINUATION,
    live: bool = False,
) -> Tuple[Deal, object]:
    """Validate that ``user`` may run an operation on ``deal_id``.

    Returns ``(deal, progress)``; ``progress`` is ``NO_PROGRESS`` for
    initiation, and for informational reads when the party has no record at
    the required stage.
    """
    deal = load_deal(session, deal_id)
    if live:
        require_live(deal)

    if mode == Mode.INITIATION:
        # Selling and buying the same deal is never allowed
        existing = session.exec(
            select(PartyProgress).where(
                PartyProgress.user_id == user.id,
                PartyProgress.deal_id == deal.id,
            )
        ).all()
        for row in existing:
            if row.track == Track.SELL.value:
                raise AlreadySelling(deal_id=deal.id)
            raise AlreadyBuying(deal_id=deal.id)
        return deal, NO_PROGRESS

    progress = find_progress(session, user.id, deal.id, track)
    if progress is not None and progress.stage >= min_stage:
        return deal, progress
    if mode == Mode.INFORMATIONAL:
        return deal, NO_PROGRESS
    raise WrongUserState(deal_id=deal.id, track=Track(track).value, required=int(min_stage))


def check_state_or_initiate(
    session: Session, user: User, deal_id: int, track: Track, min_stage: int, live: bool = True
) -> Tuple[Deal, object]:
    """Continue an existing record on ``track`` or pass the initiation check."""
    deal, progress = check_state(session, user, deal_id, track, min_stage, Mode.INFORMATIONAL, live=live)
    if progress:
        return deal, progress
    return check_state(session, user, deal_id, track, min_stage, Mode.INITIATION)


def advance(progress: PartyProgress, to_stage: int) -> bool:
    """Move ``progress`` forward to ``to_stage``.

    Stages never move backwards here; re-running a step whose stage was
    already reached leaves the stage alone. Returns whether it moved.
    """
    if to_stage <= progress.stage:
        return False
    stages = descriptor(Track(progress.track)).stages
    logger.info(
        "stage advanced",
        progress_id=progress.id,
        track=progress.track,
        from_stage=stages(progress.stage).name,
        to_stage=stages(to_stage).name,
    )
    progress.stage = int(to_stage)
    progress.updated_at = datetime.utcnow()
    return True


def override_stage(progress: PartyProgress, stage: int):
    """Admin path, the only one allowed to move a stage backwards."""
    stages = descriptor(Track(progress.track)).stages
    target = stages(stage)
    logger.warning(
        "stage overridden",
        progress_id=progress.id,
        track=progress.track,
        from_stage=stages(progress.stage).name,
        to_stage=target.name,
    )
    progress.stage = int(target)
    progress.updated_at = datetime.utcnow()


def signing_record(session: Session, progress: PartyProgress, kind: DocKind) -> Optional[SigningRecord]:
    return session.exec(
        select(SigningRecord).where(
            SigningRecord.progress_id == progress.id,
            SigningRecord.doc_kind == DocKind(kind).value,
        )
    ).first()
