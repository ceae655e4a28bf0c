"""Completion polling for signing envelopes.

Only one status check may run per (deal, track) at a time within the
process. ``PollGuard`` owns that flag; a second caller gets
``CheckInProgress`` immediately instead of waiting.

The guard is process local. Running several API workers needs a shared lock
(for example a conditional row write) in its place.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Set, Tuple

import structlog
from sqlmodel import Session

from . import storage
from .config import DOCUSIGN_STATUS_DELAY_MINUTES
from .docusign import DocusignClient, DocusignError
from .email import notify_document_signed
from .errors import CheckInProgress, DownloadError, NotEligibleToCheck, SigningTerminalNotCompleted
from .models import SigningRecord, User
from .progress import Mode, advance, check_state, signing_record
from .schemas import CompletionResult, FileToken
from .signing import commit_or_raise, is_expired
from .tracks import DocKind, Track, descriptor
from .utils import create_file_token_name

logger = structlog.get_logger(__name__)

SIGNED_CONTENT_TYPE = "application/pdf"


class PollGuard:
    def __init__(self):
        self._lock = threading.Lock()
        self._checking: Set[Tuple[int, str]] = set()

    @contextmanager
    def hold(self, deal_id: int, track: Track):
        key = (deal_id, Track(track).value)
        with self._lock:
            if key in self._checking:
                raise CheckInProgress(deal_id=deal_id, track=key[1])
            self._checking.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._checking.discard(key)

    def is_checking(self, deal_id: int, track: Track) -> bool:
        with self._lock:
            return (deal_id, Track(track).value) in self._checking


def clear_envelope(record: SigningRecord):
    record.envelope_id = ""
    record.embedded_url = ""
    record.expires_at = None
    record.next_check_at = None


class CompletionPoller:
    def __init__(self, client: DocusignClient, guard: PollGuard):
        self.client = client
        self.guard = guard

    def check_completion(
        self, session: Session, user: User, deal_id: int, track: Track, kind: DocKind
    ) -> CompletionResult:
        doc = descriptor(track).document(kind)
        with self.guard.hold(deal_id, track):
            deal, progress = check_state(session, user, deal_id, track, doc.min_stage, Mode.CONTINUATION)
            record = signing_record(session, progress, kind)
            now = datetime.utcnow()
            if (
                record is None
                or not record.envelope_id
                or is_expired(record, now)
                or (record.next_check_at is not None and record.next_check_at > now)
            ):
                raise NotEligibleToCheck(deal_id=deal.id, doc=doc.kind.value)

            envelope_id = record.envelope_id
            log = logger.bind(deal_id=deal.id, user_id=user.id, doc=doc.kind.value, envelope_id=envelope_id)
            try:
                completed, terminal = self.client.get_envelope_status(envelope_id)
            except DocusignError as exc:
                log.warning("status check failed", error=str(exc))
                completed, terminal = False, False

            if not terminal:
                record.next_check_at = now + timedelta(minutes=DOCUSIGN_STATUS_DELAY_MINUTES)
                session.add(record)
                commit_or_raise(session, deal_id=deal.id, doc=doc.kind.value)
                log.info("signing pending", next_check_at=record.next_check_at.isoformat())
                return CompletionResult(advanced=False, status="pending", stage=progress.stage)

            # Terminal either way, the party restarts from a new envelope
            clear_envelope(record)
            session.add(record)
            if not completed:
                commit_or_raise(session, deal_id=deal.id, doc=doc.kind.value)
                log.warning("signing declined or voided")
                raise SigningTerminalNotCompleted(deal_id=deal.id, doc=doc.kind.value)

            key = storage.deal_file_key(deal.id, user.id, doc.file_name)
            try:
                content = self.client.download_envelope_document(envelope_id)
                storage.save_encrypted(key, content)
            except Exception as exc:
                # The envelope is gone, keep it pending so the party can retry
                session.rollback()
                log.warning("signed document download failed", error=str(exc))
                raise DownloadError(deal_id=deal.id, doc=doc.kind.value) from exc

            token, filename = create_file_token_name(doc.file_name, SIGNED_CONTENT_TYPE)
            record.download_token = token
            record.signed_at = now
            advanced = advance(progress, doc.signed_stage)
            session.add(progress)
            commit_or_raise(session, deal_id=deal.id, doc=doc.kind.value)
            session.refresh(progress)
            log.info("document signed", stage=progress.stage)

        notify_document_signed(user, deal, doc)
        return CompletionResult(
            advanced=advanced,
            status="completed",
            stage=progress.stage,
            document=FileToken(token=token, filename=filename),
        )
