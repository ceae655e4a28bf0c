from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import deals
from ..auth import require_admin
from ..db import get_session
from ..schemas import PartyUpdate

router = APIRouter()


@router.get("/{deal_id}/parties")
def list_parties(
    deal_id: int,
    session: Session = Depends(get_session),
    admin=Depends(require_admin),
):
    return deals.list_parties(session, deal_id)


@router.patch("/{deal_id}/parties/{progress_id}")
def update_party(
    deal_id: int,
    progress_id: int,
    payload: PartyUpdate,
    session: Session = Depends(get_session),
    admin=Depends(require_admin),
):
    return deals.update_party(session, deal_id, progress_id, payload)
