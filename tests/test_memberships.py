"""Tests for signup, organization membership and leaving organizations."""

import pytest

from yoink import globals
from yoink.errors import ErrorCode, MembershipError
from yoink.memberships import MembershipService, SignupResult


@pytest.fixture
def memberships(services) -> MembershipService:
    return globals.memberships.instance


async def test_signup_creates_personal_workspace(memberships: MembershipService):
    result = await memberships.signup("  Carol@Example.com ")
    assert result.user.email == "carol@example.com"
    assert result.organization.name == "carol@example.com's Workspace"
    assert result.membership.role == "owner"
    assert result.membership.is_personal_org
    stored = await globals.db.instance.get_user_by_email("CAROL@example.com")
    assert stored.id == result.user.id


async def test_signup_with_given_id(memberships: MembershipService):
    result = await memberships.signup("dave@example.com", user_id="pre-allocated")
    assert result.user.id == "pre-allocated"
    assert await globals.db.instance.get_user("pre-allocated")


async def test_signup_duplicate_email(
    memberships: MembershipService, alice: SignupResult
):
    with pytest.raises(MembershipError) as exc:
        await memberships.signup("ALICE@example.com")
    assert exc.value.code is ErrorCode.EMAIL_ALREADY_REGISTERED


async def test_add_member(
    memberships: MembershipService, alice: SignupResult, bob: SignupResult
):
    membership = await memberships.add_member(
        alice.user.id, bob.organization.id, "admin"
    )
    assert membership.role == "admin"
    assert not membership.is_personal_org
    listed = await memberships.list_memberships(alice.user.id)
    assert [m.organization_id for m in listed] == [
        alice.organization.id,
        bob.organization.id,
    ]


async def test_add_member_errors(
    memberships: MembershipService, alice: SignupResult, bob: SignupResult
):
    with pytest.raises(MembershipError) as exc:
        await memberships.add_member("nobody", bob.organization.id)
    assert exc.value.code is ErrorCode.USER_NOT_FOUND
    with pytest.raises(MembershipError) as exc:
        await memberships.add_member(alice.user.id, "no-org")
    assert exc.value.code is ErrorCode.ORGANIZATION_NOT_FOUND
    with pytest.raises(MembershipError) as exc:
        await memberships.add_member(alice.user.id, alice.organization.id)
    assert exc.value.code is ErrorCode.ALREADY_MEMBER


async def test_has_role(
    memberships: MembershipService, alice: SignupResult, bob: SignupResult
):
    await memberships.add_member(alice.user.id, bob.organization.id, "admin")
    assert await memberships.has_role(alice.user.id, bob.organization.id, "member")
    assert await memberships.has_role(alice.user.id, bob.organization.id, "admin")
    assert not await memberships.has_role(alice.user.id, bob.organization.id, "owner")
    assert await memberships.has_role(bob.user.id, bob.organization.id, "owner")
    assert not await memberships.has_role(bob.user.id, alice.organization.id, "member")


async def test_cannot_leave_personal_org(
    memberships: MembershipService, alice: SignupResult
):
    with pytest.raises(MembershipError) as exc:
        await memberships.leave_organization(alice.user.id, alice.organization.id)
    assert exc.value.code is ErrorCode.CANNOT_LEAVE_PERSONAL_ORG


async def test_leave_unknown_membership(
    memberships: MembershipService, alice: SignupResult, bob: SignupResult
):
    with pytest.raises(MembershipError) as exc:
        await memberships.leave_organization(alice.user.id, bob.organization.id)
    assert exc.value.code is ErrorCode.MEMBERSHIP_NOT_FOUND


async def test_last_admin_cannot_leave(
    memberships: MembershipService, alice: SignupResult, bob: SignupResult
):
    shared = await memberships.signup("team@example.com")
    await memberships.add_member(alice.user.id, shared.organization.id, "admin")
    await memberships.add_member(bob.user.id, shared.organization.id, "member")
    # Pretend the owner went away; alice is now the only admin
    await globals.db.instance.delete_membership(shared.user.id, shared.organization.id)
    with pytest.raises(MembershipError) as exc:
        await memberships.leave_organization(alice.user.id, shared.organization.id)
    assert exc.value.code is ErrorCode.LAST_ADMIN
    # A plain member may always leave
    await memberships.leave_organization(bob.user.id, shared.organization.id)


async def test_leave_moves_sessions_home(
    memberships: MembershipService, alice: SignupResult, bob: SignupResult
):
    sessions = globals.sessions.instance
    await memberships.add_member(alice.user.id, bob.organization.id)
    there = await sessions.create_session(alice.user.id, bob.organization.id)
    home = await sessions.create_session(alice.user.id)

    await memberships.leave_organization(alice.user.id, bob.organization.id)

    assert (await sessions.resolve(there.id)).organization_id == alice.organization.id
    assert (await sessions.resolve(home.id)).organization_id == alice.organization.id
    assert not await globals.db.instance.get_membership(
        alice.user.id, bob.organization.id
    )
