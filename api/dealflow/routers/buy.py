from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session

from .. import deals
from ..auth import current_user
from ..db import get_session
from ..deps import get_poll_guard, get_poller, get_signing_manager
from ..errors import InputError
from ..models import User
from ..schemas import BankInfoCreate, InterestCreate
from ..tracks import DocKind, Track

router = APIRouter()

# Path segment to document kind
BUY_DOCUMENTS = {
    "engagement-letter": DocKind.ENGAGEMENT_LETTER,
    "summary-terms": DocKind.SUMMARY_TERMS,
    "de-ppm": DocKind.DE_PPM,
    "de-operating": DocKind.DE_OPERATING,
    "de-subscription": DocKind.DE_SUBSCRIPTION,
}


def _document(doc: str) -> DocKind:
    kind = BUY_DOCUMENTS.get(doc)
    if kind is None:
        raise InputError(f"unknown document {doc}", field="doc")
    return kind


@router.post("/{deal_id}/buy/interest")
def submit_interest(
    deal_id: int,
    payload: InterestCreate,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    return deals.submit_interest(session, user, deal_id, payload)


@router.post("/{deal_id}/buy/bank")
def submit_bank_info(
    deal_id: int,
    payload: BankInfoCreate,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    return deals.submit_bank_info(session, user, deal_id, Track.BUY, payload)


@router.post("/{deal_id}/buy/{doc}/sign")
def sign_document(
    deal_id: int,
    doc: str,
    request: Request,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
    manager=Depends(get_signing_manager),
):
    host = request.headers.get("host", "")
    return deals.request_signing(session, manager, user, deal_id, Track.BUY, _document(doc), host)


@router.post("/{deal_id}/buy/{doc}/check")
def check_document(
    deal_id: int,
    doc: str,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
    poller=Depends(get_poller),
):
    return deals.check_signing(session, poller, user, deal_id, Track.BUY, _document(doc))


@router.get("/{deal_id}/buy")
def buy_status(
    deal_id: int,
    lang: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
    guard=Depends(get_poll_guard),
):
    return deals.buy_status(session, guard, user, deal_id, lang or "")
