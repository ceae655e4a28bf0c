"""Share capacity of a deal.

Interest is admitted against ``shares_left`` without reserving anything;
capacity is only taken when an admin closes a buy.
"""
import structlog
from sqlalchemy import update
from sqlmodel import Session

from .errors import InputError, NotEnoughShares
from .models import Deal

logger = structlog.get_logger(__name__)


def reserve_interest(deal: Deal, requested: int) -> bool:
    if requested is None or requested <= 0:
        raise InputError("shares must be positive", field="shares")
    if requested > deal.shares_left:
        raise NotEnoughShares(deal_id=deal.id, requested=requested, shares_left=deal.shares_left)
    return True


def commit_purchase(session: Session, deal_id: int, shares: int):
    """Take ``shares`` off the deal in a single conditional UPDATE.

    The caller owns the transaction and commits it.
    """
    if shares <= 0:
        raise InputError("shares must be positive", field="shares")
    result = session.execute(
        update(Deal)
        .where(Deal.id == deal_id, Deal.shares_left >= shares)
        .values(shares_left=Deal.shares_left - shares)
    )
    if result.rowcount != 1:
        raise NotEnoughShares(deal_id=deal_id, requested=shares)
    logger.info("purchase committed", deal_id=deal_id, shares=shares)


def release_purchase(session: Session, deal_id: int, shares: int):
    """Give back shares taken by ``commit_purchase`` when a close is undone."""
    if shares <= 0:
        return
    session.execute(update(Deal).where(Deal.id == deal_id).values(shares_left=Deal.shares_left + shares))
    logger.info("purchase released", deal_id=deal_id, shares=shares)
