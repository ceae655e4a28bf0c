from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlmodel import Session

from .. import deals
from ..auth import current_user
from ..db import get_session
from ..deps import get_poll_guard, get_poller, get_signing_manager
from ..models import OFFER_DOCUMENTS, User
from ..schemas import BankInfoCreate, NewOfferCreate, OfferUpload
from ..tracks import DocKind, Track

router = APIRouter()


@router.post("/sell/new-offer", status_code=201)
def new_user_offer(
    payload: NewOfferCreate,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    return deals.create_user_offer(session, user, payload)


@router.post("/{deal_id}/sell/engagement-letter/sign")
def sign_engagement_letter(
    deal_id: int,
    request: Request,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
    manager=Depends(get_signing_manager),
):
    host = request.headers.get("host", "")
    return deals.request_signing(session, manager, user, deal_id, Track.SELL, DocKind.ENGAGEMENT_LETTER, host)


@router.post("/{deal_id}/sell/engagement-letter/check")
def check_engagement_letter(
    deal_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
    poller=Depends(get_poller),
):
    return deals.check_signing(session, poller, user, deal_id, Track.SELL, DocKind.ENGAGEMENT_LETTER)


@router.post("/{deal_id}/sell/offer")
def create_or_update_offer(
    deal_id: int,
    own_type: Optional[int] = Form(default=None),
    vested: Optional[int] = Form(default=None),
    restrictions: Optional[int] = Form(default=None),
    shares_total_own: Optional[int] = Form(default=None),
    stock_type: Optional[int] = Form(default=None),
    exercise_date: Optional[str] = Form(default=None),
    exercise_price: Optional[float] = Form(default=None),
    shares_to_sell: Optional[int] = Form(default=None),
    desire_price: Optional[float] = Form(default=None),
    share_certificate: Optional[UploadFile] = File(default=None),
    company_by_laws: Optional[UploadFile] = File(default=None),
    shareholder_agreement: Optional[UploadFile] = File(default=None),
    stock_option_plan: Optional[UploadFile] = File(default=None),
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    fields = {
        "own_type": own_type,
        "vested": vested,
        "restrictions": restrictions,
        "shares_total_own": shares_total_own,
        "stock_type": stock_type,
        "exercise_date": exercise_date,
        "exercise_price": exercise_price,
        "shares_to_sell": shares_to_sell,
        "desire_price": desire_price,
    }
    fields = {key: value for key, value in fields.items() if value is not None}

    files = {
        "share_certificate": share_certificate,
        "company_by_laws": company_by_laws,
        "shareholder_agreement": shareholder_agreement,
        "stock_option_plan": stock_option_plan,
    }
    uploads = []
    for name in OFFER_DOCUMENTS:
        upload = files[name]
        if upload is None:
            continue
        data = upload.file.read()
        if not data:
            continue
        uploads.append(OfferUpload(name=name, content=data, content_type=upload.content_type or ""))

    return deals.create_or_update_offer(session, user, deal_id, fields, uploads)


@router.post("/{deal_id}/sell/bank")
def submit_bank_info(
    deal_id: int,
    payload: BankInfoCreate,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    return deals.submit_bank_info(session, user, deal_id, Track.SELL, payload)


@router.get("/{deal_id}/sell")
def sell_status(
    deal_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
    guard=Depends(get_poll_guard),
):
    return deals.sell_status(session, guard, user, deal_id)
