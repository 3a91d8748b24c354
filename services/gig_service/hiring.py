"""The hire transaction.

Hiring moves a gig ``open -> assigned`` and one of its bids
``pending -> hired`` while rejecting every other pending bid on the gig,
all in a single database transaction. The two status moves are
compare-and-set writes (``UPDATE ... WHERE status = :expected``) whose
affected row counts are checked, so when several hires race on one gig
the first to commit wins and every other attempt matches zero rows, aborts
and reports a conflict without having changed anything.

Everything after the commit (the durable notification row, event
publishing, real-time push) is best-effort and can never undo the hire.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value
from typing import Optional, Tuple
from models import Bid, Gig, Notification, BidStatus, GigStatus, NotificationType
from errors import ConflictError, ForbiddenError, NotFoundError
from database import run_in_transaction
import crud
import logging
import policy

logger = logging.getLogger(__name__)


@dataclass
class HireOutcome:
    bid: Bid
    gig: Gig
    notification: Optional[Notification]
    rejected_count: int

    @property
    def message(self) -> str:
        if self.notification is not None:
            return self.notification.message
        return crud.hired_message(self.gig.title)


def claim_gig(db: Session, gig_id: int, now: datetime) -> bool:
    """Compare-and-set the gig from open to assigned; False if it was no longer open."""
    updated = (
        db.query(Gig)
        .filter(Gig.id == gig_id, Gig.status == GigStatus.OPEN)
        .update({Gig.status: GigStatus.ASSIGNED, Gig.updated_at: now}, synchronize_session=False)
    )
    return updated == 1


def accept_bid(db: Session, bid_id: int, gig_id: int, now: datetime) -> bool:
    """Compare-and-set the bid from pending to hired; False if it was already processed."""
    updated = (
        db.query(Bid)
        .filter(Bid.id == bid_id, Bid.gig_id == gig_id, Bid.status == BidStatus.PENDING)
        .update({Bid.status: BidStatus.HIRED, Bid.updated_at: now}, synchronize_session=False)
    )
    return updated == 1


def reject_siblings(db: Session, gig_id: int, hired_bid_id: int, now: datetime) -> int:
    return (
        db.query(Bid)
        .filter(Bid.gig_id == gig_id, Bid.id != hired_bid_id, Bid.status == BidStatus.PENDING)
        .update({Bid.status: BidStatus.REJECTED, Bid.updated_at: now}, synchronize_session=False)
    )


def _hire_unit(db: Session, bid_id: int, caller_id: int) -> Tuple[Bid, Gig, int]:
    bid = crud.get_bid(db, bid_id)
    if bid is None:
        raise NotFoundError("Bid not found")

    gig = crud.get_gig(db, bid.gig_id)
    if gig is None:
        raise NotFoundError("Gig not found")

    if not policy.can_hire(gig, caller_id):
        raise ForbiddenError("Only the gig owner or an assigned admin can hire")

    now = datetime.now(timezone.utc)
    if not claim_gig(db, gig.id, now):
        raise ConflictError("This gig has already been assigned")

    # Rolling back here also releases the claim above.
    if not accept_bid(db, bid.id, gig.id, now):
        raise ConflictError("This bid cannot be hired (already processed)")

    rejected = reject_siblings(db, gig.id, bid.id, now)

    # The outcome carries the written state and is detached, so the commit
    # does not expire it and nothing after the commit reads it back.
    set_committed_value(gig, "status", GigStatus.ASSIGNED)
    set_committed_value(gig, "updated_at", now)
    set_committed_value(bid, "status", BidStatus.HIRED)
    set_committed_value(bid, "updated_at", now)
    db.expunge(bid)
    db.expunge(gig)
    return bid, gig, rejected


def hire_bid(db: Session, bid_id: int, caller_id: int, max_attempts: Optional[int] = None) -> HireOutcome:
    bid, gig, rejected = run_in_transaction(
        db,
        lambda session: _hire_unit(session, bid_id, caller_id),
        max_attempts=max_attempts,
    )
    logger.info(
        "Gig %s assigned: bid %s hired by user %s, %s sibling bid(s) rejected",
        gig.id, bid.id, caller_id, rejected,
    )

    notification = crud.record_notification(
        db,
        user_id=bid.freelancer_id,
        type=NotificationType.HIRED,
        message=crud.hired_message(gig.title),
        data={"gigId": gig.id, "bidId": bid.id},
    )
    return HireOutcome(bid=bid, gig=gig, notification=notification, rejected_count=rejected)
