"""Signing sessions: one envelope per (party, document kind).

An envelope is created from the document's template the first time a party
asks to sign, reused while it is still valid, and replaced once its signing
window has passed. Every request gets a fresh embedded url bound to the
caller's host.
"""
from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from .config import DOCUSIGN_EXPIRE_DAYS
from .docusign import DocusignClient, DocusignError
from .errors import (
    AlreadyInitiated,
    EnvelopeError,
    OperationError,
    RecipientError,
    SigningProviderError,
    WrongUserState,
)
from .models import Company, Deal, PartyProgress, SigningRecord, User
from .progress import signing_record
from .schemas import SigningUrlResult
from .tracks import DocKind, SigningContext, Track, descriptor

logger = structlog.get_logger(__name__)

SIGNER_ROLE = "client"


def is_expired(record: SigningRecord, now: datetime) -> bool:
    return record.expires_at is None or record.expires_at < now


def commit_or_raise(session: Session, **context):
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("persist failed", error=str(exc), **context)
        raise OperationError(**context) from exc


class SigningSessionManager:
    def __init__(self, client: DocusignClient):
        self.client = client

    def get_or_create_signing_url(
        self,
        session: Session,
        user: User,
        deal: Deal,
        progress,
        track: Track,
        kind: DocKind,
        host: str = "",
    ) -> SigningUrlResult:
        """Return an embedded signing url for ``kind``.

        ``progress`` is ``NO_PROGRESS`` on the party's first step; the
        progress record and its signing record are then created together.
        """
        doc = descriptor(track).document(kind)
        log = logger.bind(user_id=user.id, deal_id=deal.id, track=Track(track).value, doc=doc.kind.value)

        record = signing_record(session, progress, kind) if progress else None
        if progress and progress.stage >= doc.signed_stage:
            raise WrongUserState("document already signed", deal_id=deal.id, doc=doc.kind.value)

        now = datetime.utcnow()
        if record is None or not record.envelope_id or is_expired(record, now):
            context = self._context(session, user, deal, progress)
            try:
                envelope_id, started = self.client.create_envelope_with_template(
                    doc.template_id,
                    SIGNER_ROLE,
                    str(user.id),
                    doc.subject,
                    user.email,
                    user.full_name,
                    doc.substitutions(context),
                )
            except DocusignError as exc:
                log.warning("envelope create failed", error=str(exc))
                raise EnvelopeError(deal_id=deal.id, doc=doc.kind.value) from exc
            log.info("envelope created", envelope_id=envelope_id, renewed=record is not None)

            if record is None:
                record = SigningRecord(doc_kind=doc.kind.value)
            record.envelope_id = envelope_id
            record.embedded_url = ""
            record.expires_at = started + timedelta(days=DOCUSIGN_EXPIRE_DAYS)
            record.next_check_at = None
            # Keep the envelope before asking for a url so a retry reuses it
            progress = self._save(session, user, deal, track, progress, record, doc.initiates)

        try:
            url = self.client.create_embedded_recipient_url(
                host, record.envelope_id, str(user.id), user.email, user.full_name
            )
        except DocusignError as exc:
            log.warning("recipient url failed", envelope_id=record.envelope_id, error=str(exc))
            raise RecipientError(deal_id=deal.id, doc=doc.kind.value) from exc

        record.embedded_url = url
        session.add(record)
        commit_or_raise(session, deal_id=deal.id, doc=doc.kind.value)
        session.refresh(record)
        session.refresh(progress)

        return SigningUrlResult(
            url=url,
            envelope_id=record.envelope_id,
            stage=progress.stage,
            expires_at=record.expires_at,
        )

    def _context(self, session: Session, user: User, deal: Deal, progress) -> SigningContext:
        company = None
        if deal.company_id is not None:
            company = session.get(Company, deal.company_id)
            if company is None:
                raise SigningProviderError("deal company not found", deal_id=deal.id)
        return SigningContext(user=user, deal=deal, company=company, progress=progress or None)

    def _save(self, session, user, deal, track, progress, record, initiates) -> PartyProgress:
        if progress:
            session.add(record)
            if record.progress_id is None:
                record.progress_id = progress.id
            commit_or_raise(session, deal_id=deal.id, doc=record.doc_kind)
            return progress

        if not initiates:
            raise WrongUserState(deal_id=deal.id, track=Track(track).value)

        # First step of a party: progress and signing record land together
        progress = PartyProgress(
            user_id=user.id,
            deal_id=deal.id,
            track=Track(track).value,
            stage=int(descriptor(track).first_stage),
        )
        try:
            session.add(progress)
            session.flush()
            record.progress_id = progress.id
            session.add(record)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            logger.info("concurrent initiation", user_id=user.id, deal_id=deal.id, track=progress.track)
            raise AlreadyInitiated(deal_id=deal.id) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("persist failed", error=str(exc), deal_id=deal.id)
            raise OperationError(deal_id=deal.id) from exc
        logger.info("party initiated", user_id=user.id, deal_id=deal.id, track=progress.track)
        return progress
