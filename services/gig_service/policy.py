"""Authorization decisions over a gig snapshot.

Every function here is pure: it reads the gig it is given and nothing else.
Callers evaluate the relevant predicate before any write so a refusal never
leaves partial side effects behind.
"""
from models import Gig, GigStatus


def is_owner(gig: Gig, user_id: int) -> bool:
    return gig.owner_id == user_id


def is_admin(gig: Gig, user_id: int) -> bool:
    return user_id in gig.admin_ids


def is_manager(gig: Gig, user_id: int) -> bool:
    """Owner or delegated admin."""
    return is_owner(gig, user_id) or is_admin(gig, user_id)


def can_bid(gig: Gig, caller_id: int) -> bool:
    return gig.status == GigStatus.OPEN and not is_manager(gig, caller_id)


def can_view_bids(gig: Gig, caller_id: int) -> bool:
    return is_manager(gig, caller_id)


def can_hire(gig: Gig, caller_id: int) -> bool:
    return is_manager(gig, caller_id)


def can_manage_admins(gig: Gig, caller_id: int) -> bool:
    # Admins may hire, but only the owner edits the admin set.
    return is_owner(gig, caller_id)


def can_add_admin(gig: Gig, target_user_id: int) -> bool:
    return not is_manager(gig, target_user_id)
