import pytest

from models import Gig, GigAdmin, GigStatus
import policy

OWNER = 1
ADMIN = 2
OUTSIDER = 3


def make_gig(status=GigStatus.OPEN, admins=(ADMIN,)):
    return Gig(
        owner_id=OWNER,
        title="Logo design",
        description="Vector logo",
        budget=100,
        status=status,
        admin_links=[GigAdmin(user_id=user_id) for user_id in admins],
    )


def test_outsider_can_bid_on_open_gig():
    assert policy.can_bid(make_gig(), OUTSIDER)


@pytest.mark.parametrize("caller", [OWNER, ADMIN])
def test_managers_cannot_bid(caller):
    assert not policy.can_bid(make_gig(), caller)


def test_nobody_can_bid_on_assigned_gig():
    assert not policy.can_bid(make_gig(status=GigStatus.ASSIGNED), OUTSIDER)


@pytest.mark.parametrize("caller, allowed", [(OWNER, True), (ADMIN, True), (OUTSIDER, False)])
def test_view_and_hire_follow_management(caller, allowed):
    gig = make_gig()
    assert policy.can_view_bids(gig, caller) is allowed
    assert policy.can_hire(gig, caller) is allowed


def test_only_owner_manages_admins():
    gig = make_gig()
    assert policy.can_manage_admins(gig, OWNER)
    assert not policy.can_manage_admins(gig, ADMIN)
    assert not policy.can_manage_admins(gig, OUTSIDER)


def test_can_add_admin_rejects_owner_and_existing_admins():
    gig = make_gig()
    assert policy.can_add_admin(gig, OUTSIDER)
    assert not policy.can_add_admin(gig, OWNER)
    assert not policy.can_add_admin(gig, ADMIN)


def test_gig_without_admins():
    gig = make_gig(admins=())
    assert gig.admin_ids == []
    assert not policy.can_hire(gig, ADMIN)
    assert policy.can_bid(gig, ADMIN)
