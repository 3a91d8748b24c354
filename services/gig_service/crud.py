from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy import or_
from models import (
    Gig,
    GigAdmin,
    Bid,
    Notification,
    GigStatus,
    NotificationType,
)
from errors import (
    ConflictError,
    DuplicateBidError,
    ForbiddenError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from identity import IdentityClient, IdentityUnavailable
from typing import Iterable, List, Optional, Tuple
import logging
import policy

logger = logging.getLogger(__name__)


def hired_message(gig_title: str) -> str:
    return f"You have been hired for {gig_title}!"


def admin_assigned_message(gig_title: str) -> str:
    return f'You have been assigned as an admin for the gig "{gig_title}"'


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ------- Gigs -------
def normalize_admin_ids(admins: Optional[Iterable], owner_id: int) -> List[int]:
    """Drop empty entries and the owner, de-duplicate, keep first-seen order."""
    result: List[int] = []
    for admin_id in admins or []:
        if not admin_id:
            continue
        admin_id = int(admin_id)
        if admin_id == owner_id or admin_id in result:
            continue
        result.append(admin_id)
    return result


def create_gig(
    db: Session,
    owner_id: int,
    title: str,
    description: str,
    budget: float,
    admins: Optional[Iterable] = None,
) -> Gig:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    if not description or not description.strip():
        raise ValidationError("Description is required")
    if budget is None or budget <= 0:
        raise ValidationError("Budget must be a positive amount")

    gig = Gig(
        owner_id=owner_id,
        title=title,
        description=description,
        budget=budget,
        status=GigStatus.OPEN,
        admin_links=[GigAdmin(user_id=admin_id) for admin_id in normalize_admin_ids(admins, owner_id)],
    )
    db.add(gig)
    db.commit()
    db.refresh(gig)
    logger.info("Gig %s created by user %s", gig.id, owner_id)
    return gig


def get_gig(db: Session, gig_id: int) -> Optional[Gig]:
    return db.query(Gig).filter(Gig.id == gig_id).first()


def require_gig(db: Session, gig_id: int) -> Gig:
    gig = get_gig(db, gig_id)
    if gig is None:
        raise NotFoundError("Gig not found")
    return gig


def list_open_gigs(db: Session, search: Optional[str] = None, page: int = 1, limit: int = 10) -> Tuple[List[Gig], int]:
    """Open gigs, newest first, optionally filtered by a case-insensitive title substring."""
    page = max(page, 1)
    limit = max(limit, 1)
    query = db.query(Gig).filter(Gig.status == GigStatus.OPEN)
    if search and search.strip():
        query = query.filter(Gig.title.ilike(f"%{_escape_like(search.strip())}%", escape="\\"))
    total = query.count()
    gigs = (
        query.order_by(Gig.created_at.desc(), Gig.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return gigs, total


def list_my_gigs(db: Session, user_id: int) -> List[Gig]:
    return (
        db.query(Gig)
        .filter(or_(Gig.owner_id == user_id, Gig.admin_links.any(GigAdmin.user_id == user_id)))
        .order_by(Gig.created_at.desc(), Gig.id.desc())
        .all()
    )


# ------- Admin management -------
def add_admin(
    db: Session,
    gig_id: int,
    email: str,
    caller_id: int,
    identity: IdentityClient,
) -> Tuple[Gig, int, Optional[Notification]]:
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required")

    gig = require_gig(db, gig_id)
    if not policy.can_manage_admins(gig, caller_id):
        raise ForbiddenError("Only the owner can manage admins")

    try:
        user = identity.find_user_by_email(email)
    except IdentityUnavailable as exc:
        raise TransientError("Cannot reach the user directory, please retry") from exc
    if user is None:
        raise NotFoundError("User with that email not found")

    target_id = int(user["id"])
    if policy.is_owner(gig, target_id):
        raise ConflictError("Owner cannot be added as admin")
    if not policy.can_add_admin(gig, target_id):
        raise ConflictError("User is already an admin")

    gig.admin_links.append(GigAdmin(user_id=target_id))
    try:
        db.commit()
    except IntegrityError as exc:
        # A concurrent add of the same user won the insert.
        db.rollback()
        raise ConflictError("User is already an admin") from exc
    db.refresh(gig)
    logger.info("User %s added as admin of gig %s", target_id, gig.id)

    notification = record_notification(
        db,
        user_id=target_id,
        type=NotificationType.ADMIN_ASSIGNED,
        message=admin_assigned_message(gig.title),
        data={"gigId": gig.id},
    )
    return gig, target_id, notification


def remove_admin(db: Session, gig_id: int, user_id: int, caller_id: int) -> Gig:
    gig = require_gig(db, gig_id)
    if not policy.can_manage_admins(gig, caller_id):
        raise ForbiddenError("Only the owner can manage admins")

    link = next((link for link in gig.admin_links if link.user_id == user_id), None)
    if link is None:
        raise NotFoundError("Admin not found on this gig")

    gig.admin_links.remove(link)
    db.commit()
    db.refresh(gig)
    logger.info("User %s removed from admins of gig %s", user_id, gig.id)
    return gig


# ------- Bids -------
def submit_bid(db: Session, gig_id: int, freelancer_id: int, message: str, price: float) -> Bid:
    if not message or not message.strip():
        raise ValidationError("Message is required")
    if price is None or price <= 0:
        raise ValidationError("Price must be a positive amount")

    gig = require_gig(db, gig_id)
    # Managers are refused whatever the gig status is.
    if policy.is_manager(gig, freelancer_id):
        raise ForbiddenError("You cannot bid on a gig you own or manage")
    if not policy.can_bid(gig, freelancer_id):
        raise ConflictError("This gig is no longer accepting bids")

    bid = Bid(gig_id=gig.id, freelancer_id=freelancer_id, message=message, price=price)
    db.add(bid)
    try:
        db.commit()
    except IntegrityError as exc:
        # uq_bids_gig_freelancer settles racing duplicate submissions.
        db.rollback()
        raise DuplicateBidError("You have already submitted a bid for this gig") from exc
    db.refresh(bid)
    return bid


def get_bid(db: Session, bid_id: int) -> Optional[Bid]:
    return db.query(Bid).filter(Bid.id == bid_id).first()


def list_bids_for_gig(db: Session, gig_id: int, caller_id: int) -> List[Bid]:
    gig = require_gig(db, gig_id)
    if not policy.can_view_bids(gig, caller_id):
        raise ForbiddenError("Only the gig owner or assigned admins can view bids")
    return (
        db.query(Bid)
        .filter(Bid.gig_id == gig.id)
        .order_by(Bid.created_at.desc(), Bid.id.desc())
        .all()
    )


def list_my_bids(db: Session, freelancer_id: int) -> List[Bid]:
    return (
        db.query(Bid)
        .options(joinedload(Bid.gig))
        .filter(Bid.freelancer_id == freelancer_id)
        .order_by(Bid.created_at.desc(), Bid.id.desc())
        .all()
    )


# ------- Notifications -------
def create_notification(db: Session, user_id: int, type: NotificationType, message: str, data: dict = None) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=type,
        message=message,
        data=data or {},
        read=False,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def record_notification(db: Session, user_id: int, type: NotificationType, message: str, data: dict = None) -> Optional[Notification]:
    """Persist a notification after the triggering change has committed.

    Returns None instead of raising; the triggering change must stand.
    """
    try:
        return create_notification(db, user_id, type, message, data)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Failed to persist %s notification for user %s: %s", type.value, user_id, exc)
        return None


def get_notifications(db: Session, user_id: int, limit: int = 50, unread_only: bool = False) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_notification_read(db: Session, notification_id: int, user_id: int) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()
    if notification is None:
        raise NotFoundError("Notification not found")
    if not notification.read:
        notification.read = True
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    updated = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.read.is_(False),
    ).update({Notification.read: True}, synchronize_session=False)
    db.commit()
    return updated
