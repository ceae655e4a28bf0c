"""Seller and buyer track operations.

Each function takes the session, the authenticated user, the deal id and the
track specific input, and returns a result record. Routers stay thin and
only translate HTTP into these calls.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Tuple

import structlog
from minio.error import S3Error
from pydantic import ValidationError
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from . import storage
from .crypto import dec_field, enc_field
from .email import notify_wire_instructions
from .errors import (
    AlreadyOffering,
    InputError,
    NoBankInfo,
    NoSuchOffer,
    OperationError,
    ProgressUnknown,
    TokenError,
    WrongUserState,
)
from .ledger import commit_purchase, release_purchase, reserve_interest
from .models import OFFER_DOCUMENTS, BankInfo, Company, Deal, Offer, PartyProgress, SigningRecord, User
from .poller import SIGNED_CONTENT_TYPE, CompletionPoller, PollGuard
from .progress import (
    Mode,
    advance,
    check_state,
    check_state_or_initiate,
    load_deal,
    override_stage,
    require_live,
    require_live_or_submitted,
    signing_record,
)
from .schemas import (
    BankInfoCreate,
    BankInfoOut,
    BankInfoResult,
    BuyStatus,
    CompletionResult,
    FileToken,
    InterestCreate,
    InterestResult,
    NewOfferCreate,
    NewOfferResult,
    OfferCreate,
    OfferOut,
    OfferResult,
    OfferUpload,
    PartyList,
    PartyOut,
    PartyUpdate,
    SellStatus,
    SigningUrlResult,
)
from .signing import SigningSessionManager, commit_or_raise
from .tracks import BuyerStage, DealState, DocKind, SellerStage, Track, descriptor
from .utils import create_file_token_name, is_download_token

logger = structlog.get_logger(__name__)

BANK_MIN_STAGE = {
    Track.SELL: SellerStage.ADMIN_APPROVED_OFFER,
    Track.BUY: BuyerStage.ADMIN_APPROVED_INTEREST,
}


# Signing, shared by both tracks


def request_signing(
    session: Session,
    manager: SigningSessionManager,
    user: User,
    deal_id: int,
    track: Track,
    kind: DocKind,
    host: str = "",
) -> SigningUrlResult:
    doc = descriptor(track).document(kind)
    if doc.initiates:
        deal, progress = check_state_or_initiate(session, user, deal_id, track, doc.min_stage, live=True)
    else:
        deal, progress = check_state(session, user, deal_id, track, doc.min_stage, Mode.CONTINUATION, live=True)
    return manager.get_or_create_signing_url(session, user, deal, progress, track, kind, host)


def check_signing(
    session: Session, poller: CompletionPoller, user: User, deal_id: int, track: Track, kind: DocKind
) -> CompletionResult:
    require_live(load_deal(session, deal_id))
    return poller.check_completion(session, user, deal_id, track, kind)


# Seller track


def _find_offer(session: Session, user_id: int, deal_id: int) -> Optional[Offer]:
    return session.exec(select(Offer).where(Offer.user_id == user_id, Offer.deal_id == deal_id)).first()


def _offer_fields(fields: Dict[str, object]) -> OfferCreate:
    try:
        return OfferCreate(**fields)
    except ValidationError as exc:
        first = exc.errors()[0]
        name = ".".join(str(part) for part in first.get("loc", ()))
        raise InputError(f"bad argument: {name}", field=name) from exc


def _offer_complete(offer: Offer) -> bool:
    return all(getattr(offer, f"{name}_name") for name in OFFER_DOCUMENTS)


def create_or_update_offer(
    session: Session,
    user: User,
    deal_id: int,
    fields: Dict[str, object],
    uploads: List[OfferUpload],
) -> OfferResult:
    deal, progress = check_state(session, user, deal_id, Track.SELL, SellerStage.ENGAGEMENT_LETTER_SIGNED)
    require_live_or_submitted(deal)

    if progress.stage < SellerStage.OFFER_CREATED:
        data = _offer_fields(fields)
        offer = _find_offer(session, user.id, deal.id)
        if offer is None:
            offer = Offer(user_id=user.id, company_id=deal.company_id, deal_id=deal.id)
        for key, value in data.model_dump().items():
            setattr(offer, key, value)
        session.add(offer)
        progress.shares = data.shares_to_sell
        progress.amount = int(data.shares_to_sell * deal.actual_price)
        advance(progress, SellerStage.OFFER_CREATED)
        session.add(progress)
        commit_or_raise(session, deal_id=deal.id, step="offer")
        logger.info("offer created", deal_id=deal.id, user_id=user.id, offer_id=offer.id)

    offer = _find_offer(session, user.id, deal.id)
    if offer is None:
        raise NoSuchOffer(deal_id=deal.id)

    files: Dict[str, FileToken] = {}
    if progress.stage < SellerStage.OFFER_COMPLETED and uploads:
        for upload in uploads:
            if upload.name not in OFFER_DOCUMENTS:
                raise InputError(f"unknown document {upload.name}", field=upload.name)
            key = storage.deal_file_key(deal.id, user.id, upload.name)
            try:
                storage.save_encrypted(key, upload.content)
            except Exception as exc:
                logger.error("offer upload failed", key=key, error=str(exc))
                raise OperationError(deal_id=deal.id, document=upload.name) from exc
            token, filename = create_file_token_name(upload.name, upload.content_type)
            setattr(offer, f"{upload.name}_key", key)
            setattr(offer, f"{upload.name}_type", upload.content_type)
            setattr(offer, f"{upload.name}_name", filename)
            setattr(offer, f"{upload.name}_token", token)
            files[upload.name] = FileToken(token=token, filename=filename)
        session.add(offer)
        commit_or_raise(session, deal_id=deal.id, step="offer_upload")

        if _offer_complete(offer):
            advance(progress, SellerStage.OFFER_COMPLETED)
            session.add(progress)
            commit_or_raise(session, deal_id=deal.id, step="offer_complete")

    return OfferResult(
        stage=progress.stage,
        offer_id=offer.id,
        completed=_offer_complete(offer),
        files=files,
    )


def create_user_offer(session: Session, user: User, form: NewOfferCreate) -> NewOfferResult:
    """Start selling shares of a company that has no listed deal yet."""
    name = form.company_name.strip()
    if not name:
        raise InputError("bad argument: company_name", field="company_name")
    deal = session.exec(
        select(Deal).where(
            Deal.state == DealState.USER_SUBMITTED,
            func.lower(Deal.name) == name.lower(),
        )
    ).first()
    if deal is None:
        deal = Deal(name=name, state=DealState.USER_SUBMITTED)
        session.add(deal)
        session.flush()
    else:
        existing = session.exec(
            select(PartyProgress).where(PartyProgress.user_id == user.id, PartyProgress.deal_id == deal.id)
        ).first()
        if existing is not None:
            session.rollback()
            raise AlreadyOffering(deal_id=deal.id)

    # No engagement letter for a submitted company, the party starts as signed
    progress = PartyProgress(
        user_id=user.id,
        deal_id=deal.id,
        track=Track.SELL.value,
        stage=int(SellerStage.ENGAGEMENT_LETTER_SIGNED),
    )
    session.add(progress)
    commit_or_raise(session, step="user_offer")
    session.refresh(deal)
    logger.info("user offer started", deal_id=deal.id, user_id=user.id)
    return NewOfferResult(stage=progress.stage, deal_id=deal.id)


# Bank information, shared by both tracks


def submit_bank_info(
    session: Session, user: User, deal_id: int, track: Track, form: BankInfoCreate
) -> BankInfoResult:
    deal, progress = check_state(
        session, user, deal_id, track, BANK_MIN_STAGE[Track(track)], Mode.CONTINUATION, live=True
    )
    # A verified account stays linked, changing it goes through an admin
    if progress.stage >= descriptor(track).stages.BANK_VERIFIED:
        raise WrongUserState("bank info already verified", deal_id=deal.id, stage=progress.stage)

    # A user keeps one record per routing and account pair
    bank = None
    for candidate in session.exec(select(BankInfo).where(BankInfo.user_id == user.id)).all():
        if (
            dec_field(candidate.routing_number_encrypted) == form.routing_number
            and dec_field(candidate.account_number_encrypted) == form.account_number
        ):
            bank = candidate
            break
    reused = bank is not None
    if bank is None:
        bank = BankInfo(
            user_id=user.id,
            full_name=form.full_name,
            nick_name=form.nick_name,
            routing_number_encrypted=enc_field(form.routing_number),
            account_number_encrypted=enc_field(form.account_number),
            account_type=form.account_type,
        )
        session.add(bank)
        commit_or_raise(session, deal_id=deal.id, step="bank")
        session.refresh(bank)

    progress.bank_id = bank.id
    advance(progress, descriptor(track).stages.BANK_INFO_SUBMITTED)
    session.add(progress)
    commit_or_raise(session, deal_id=deal.id, step="bank_link")
    logger.info("bank info submitted", deal_id=deal.id, user_id=user.id, bank_id=bank.id, reused=reused)
    return BankInfoResult(stage=progress.stage, bank_id=bank.id, reused=reused)


def _bank_out(session: Session, progress: PartyProgress) -> BankInfoOut:
    bank = session.get(BankInfo, progress.bank_id) if progress.bank_id else None
    if bank is None:
        raise NoBankInfo(deal_id=progress.deal_id)
    return BankInfoOut(
        full_name=bank.full_name,
        nick_name=bank.nick_name,
        routing_number=dec_field(bank.routing_number_encrypted),
        account_number=dec_field(bank.account_number_encrypted),
        account_type=bank.account_type,
    )


# Status reads


def _company_name(session: Session, deal: Deal) -> str:
    company = session.get(Company, deal.company_id) if deal.company_id is not None else None
    return company.name if company else deal.name


def _signed_files(session: Session, user: User, deal: Deal, progress: PartyProgress) -> Dict[str, FileToken]:
    """Issue fresh tokens for every signed document still in storage."""
    files = {}
    for kind, doc in descriptor(Track(progress.track)).documents.items():
        if progress.stage < doc.signed_stage:
            continue
        record = signing_record(session, progress, kind)
        if record is None or not storage.object_exists(storage.deal_file_key(deal.id, user.id, doc.file_name)):
            continue
        token, filename = create_file_token_name(doc.file_name, SIGNED_CONTENT_TYPE)
        record.download_token = token
        session.add(record)
        files[kind.value] = FileToken(token=token, filename=filename)
    return files


def _offer_files(user: User, offer: Offer) -> Dict[str, FileToken]:
    files = {}
    for name in OFFER_DOCUMENTS:
        if not getattr(offer, f"{name}_name"):
            continue
        if not storage.object_exists(storage.deal_file_key(offer.deal_id, user.id, name)):
            continue
        token, _ = create_file_token_name(name, "")
        setattr(offer, f"{name}_token", token)
        files[name] = FileToken(token=token, filename=getattr(offer, f"{name}_name"))
    return files


def _save_tokens(session: Session, files: Dict[str, FileToken]) -> Dict[str, FileToken]:
    # Tokens are only handed out once they are stored
    if not files:
        return files
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("token refresh not saved", error=str(exc))
        return {}
    return files


def sell_status(session: Session, guard: PollGuard, user: User, deal_id: int) -> SellStatus:
    deal, progress = check_state(
        session, user, deal_id, Track.SELL, SellerStage.ENGAGEMENT_STARTED, Mode.INFORMATIONAL
    )
    if not progress:
        return SellStatus(stage=-1)
    require_live_or_submitted(deal)

    status = SellStatus(
        stage=progress.stage,
        signing_check_in_progress=guard.is_checking(deal.id, Track.SELL),
        company_name=_company_name(session, deal),
    )
    # Leave storage alone while a check may be writing to it
    if status.signing_check_in_progress:
        return status

    files = _signed_files(session, user, deal, progress)
    offer = None
    if progress.stage >= SellerStage.OFFER_CREATED:
        offer = _find_offer(session, user.id, deal.id)
        if offer is None:
            raise NoSuchOffer(deal_id=deal.id)
        files.update(_offer_files(user, offer))
    status.files = _save_tokens(session, files)

    if offer is not None:
        status.offer = OfferOut(**{name: getattr(offer, name) for name in OfferOut.model_fields})
    if progress.stage >= SellerStage.BANK_INFO_SUBMITTED:
        status.bank = _bank_out(session, progress)
    return status


# Buyer track


def submit_interest(session: Session, user: User, deal_id: int, form: InterestCreate) -> InterestResult:
    deal, progress = check_state(
        session, user, deal_id, Track.BUY, BuyerStage.ENGAGEMENT_LETTER_SIGNED, Mode.CONTINUATION, live=True
    )
    # Shares are fixed once the summary of terms names them
    if progress.stage >= BuyerStage.SUMMARY_TERMS_SIGNED:
        raise WrongUserState("interest already confirmed", deal_id=deal.id)
    reserve_interest(deal, form.shares)

    progress.shares = form.shares
    progress.amount = int(form.shares * deal.actual_price)
    advance(progress, BuyerStage.INTEREST_SUBMITTED)
    session.add(progress)
    commit_or_raise(session, deal_id=deal.id, step="interest")
    logger.info("interest submitted", deal_id=deal.id, user_id=user.id, shares=form.shares)
    return InterestResult(stage=progress.stage, shares=progress.shares, amount=progress.amount)


def wire_text(deal: Deal, language: str) -> str:
    if language == "zh-CN" and deal.escrow_account_cn:
        return deal.escrow_account_cn
    return deal.escrow_account


def buy_status(session: Session, guard: PollGuard, user: User, deal_id: int, language: str = "") -> BuyStatus:
    deal, progress = check_state(
        session, user, deal_id, Track.BUY, BuyerStage.ENGAGEMENT_STARTED, Mode.INFORMATIONAL, live=True
    )
    if not progress:
        return BuyStatus(stage=-1)

    status = BuyStatus(
        stage=progress.stage,
        signing_check_in_progress=guard.is_checking(deal.id, Track.BUY),
        company_name=_company_name(session, deal),
    )
    if status.signing_check_in_progress:
        return status

    if progress.stage >= BuyerStage.INTEREST_SUBMITTED:
        status.shares = progress.shares
    if progress.stage >= BuyerStage.BANK_INFO_SUBMITTED:
        status.bank = _bank_out(session, progress)
    if progress.stage >= BuyerStage.WAITING_FUND_TRANSFER:
        status.wire = wire_text(deal, language or user.last_language)
    status.files = _save_tokens(session, _signed_files(session, user, deal, progress))
    return status


# Token downloads


def resolve_download(session: Session, token: str) -> Tuple[bytes, str, str]:
    """Return ``(content, content_type, filename)`` for a download token."""
    if not is_download_token(token):
        raise TokenError()

    record = session.exec(select(SigningRecord).where(SigningRecord.download_token == token)).first()
    if record is not None:
        progress = session.get(PartyProgress, record.progress_id)
        if progress is None:
            raise TokenError()
        doc = descriptor(Track(progress.track)).document(DocKind(record.doc_kind))
        if progress.stage < doc.signed_stage:
            raise TokenError()
        key = storage.deal_file_key(progress.deal_id, progress.user_id, doc.file_name)
        _, filename = create_file_token_name(doc.file_name, SIGNED_CONTENT_TYPE)
        return _load(key), SIGNED_CONTENT_TYPE, filename

    columns = [getattr(Offer, f"{name}_token") for name in OFFER_DOCUMENTS]
    offer = session.exec(select(Offer).where(or_(*(column == token for column in columns)))).first()
    if offer is None:
        raise TokenError()
    for name in OFFER_DOCUMENTS:
        if getattr(offer, f"{name}_token") == token:
            key = storage.deal_file_key(offer.deal_id, offer.user_id, name)
            content_type = getattr(offer, f"{name}_type") or "application/octet-stream"
            return _load(key), content_type, getattr(offer, f"{name}_name")
    raise TokenError()


def _load(key: str) -> bytes:
    try:
        return storage.load_decrypted(key)
    except S3Error as exc:
        logger.warning("download missing", key=key, error=str(exc))
        raise TokenError("file not found") from exc


# Admin


def _party_out(progress: PartyProgress) -> PartyOut:
    stages = descriptor(Track(progress.track)).stages
    return PartyOut(
        id=progress.id,
        user_id=progress.user_id,
        deal_id=progress.deal_id,
        track=progress.track,
        stage=progress.stage,
        stage_name=stages(progress.stage).name,
        shares=progress.shares,
        amount=progress.amount,
        bank_id=progress.bank_id,
        updated_at=progress.updated_at,
    )


def list_parties(session: Session, deal_id: int) -> PartyList:
    load_deal(session, deal_id)
    rows = session.exec(
        select(PartyProgress).where(PartyProgress.deal_id == deal_id).order_by(PartyProgress.id)
    ).all()
    return PartyList(parties=[_party_out(row) for row in rows])


def update_party(session: Session, deal_id: int, progress_id: int, form: PartyUpdate) -> PartyOut:
    deal = load_deal(session, deal_id)
    progress = session.get(PartyProgress, progress_id)
    if progress is None or progress.deal_id != deal.id:
        raise ProgressUnknown(deal_id=deal_id, progress_id=progress_id)

    track = Track(progress.track)
    stages = descriptor(track).stages
    previous = progress.stage
    if form.stage is not None:
        try:
            stages(form.stage)
        except ValueError as exc:
            raise InputError(f"unknown stage {form.stage}", field="stage") from exc

    if form.shares is not None:
        progress.shares = form.shares
        progress.amount = int(form.shares * deal.actual_price)

    entering = set()
    if form.stage is not None:
        override_stage(progress, form.stage)
        entering = {stage for stage in stages if previous < stage <= progress.stage}

    if track == Track.BUY:
        if BuyerStage.DEAL_CLOSED in entering and progress.purchase_committed_at is None:
            commit_purchase(session, deal.id, progress.shares)
            progress.committed_shares = progress.shares
            progress.purchase_committed_at = datetime.utcnow()
        elif progress.stage < BuyerStage.DEAL_CLOSED and progress.purchase_committed_at is not None:
            release_purchase(session, deal.id, progress.committed_shares)
            progress.committed_shares = 0
            progress.purchase_committed_at = None

    session.add(progress)
    commit_or_raise(session, deal_id=deal.id, progress_id=progress.id)
    session.refresh(progress)

    if track == Track.BUY and BuyerStage.WAITING_FUND_TRANSFER in entering:
        user = session.get(User, progress.user_id)
        if user is not None:
            notify_wire_instructions(user, deal, progress)
    return _party_out(progress)
