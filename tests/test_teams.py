"""
Tests for team management.

Run with: pytest tests/
"""

import pytest

from code_roast.errors import Forbidden, NotFound, ValidationError
from code_roast.models import Entitlement
from code_roast.teams import (
    create_team,
    invite_member,
    list_team_members,
    list_user_teams,
    remove_member,
    slugify,
)

TEAM_PLAN = Entitlement(plan="team", status="active", is_subscribed=True)


@pytest.fixture
def owner(make_user):
    return make_user(plan="team", status="active", email="owner@example.com")


@pytest.fixture
def team(db, owner):
    return create_team(db, owner, "Night Shift", TEAM_PLAN)


def test_slugify():
    assert slugify("My Cool Team!") == "my-cool-team"
    assert slugify("  --Ops__Crew-- ") == "ops-crew"


def test_create_requires_team_plan(db, make_user):
    user_id = make_user(plan="pro", status="active")
    pro = Entitlement(plan="pro", status="active", is_subscribed=True)
    with pytest.raises(Forbidden) as exc:
        create_team(db, user_id, "Night Shift", pro)
    assert exc.value.upgrade_required


def test_create_rejects_short_name(db, owner):
    with pytest.raises(ValidationError):
        create_team(db, owner, "x", TEAM_PLAN)


def test_creator_is_owner(db, owner, team):
    assert team.slug == "night-shift"
    teams = list_user_teams(db, owner)
    assert [(t.slug, t.role) for t in teams] == [("night-shift", "owner")]


def test_duplicate_name(db, owner, team):
    with pytest.raises(ValidationError) as exc:
        create_team(db, owner, "night shift", TEAM_PLAN)
    assert exc.value.message == "A team with this name already exists"


def test_invite_existing_user(db, owner, team, make_user):
    invited = make_user(email="pal@example.com")
    invite_member(db, owner, team.id, "pal@example.com", "admin")

    members = list_team_members(db, owner, team.id)
    assert {(m.user_id, m.role) for m in members} == {(owner, "owner"), (invited, "admin")}


def test_invite_unknown_email(db, owner, team):
    with pytest.raises(NotFound):
        invite_member(db, owner, team.id, "ghost@example.com", "member")


def test_invite_twice(db, owner, team, make_user):
    make_user(email="pal@example.com")
    invite_member(db, owner, team.id, "pal@example.com", "member")
    with pytest.raises(ValidationError):
        invite_member(db, owner, team.id, "pal@example.com", "member")


def test_invite_validates_role_and_email(db, owner, team):
    with pytest.raises(ValidationError) as exc:
        invite_member(db, owner, team.id, "nope", "owner")
    assert set(exc.value.field_errors) == {"email", "role"}


def test_plain_member_cannot_invite(db, owner, team, make_user):
    member = make_user(email="pal@example.com")
    make_user(email="friend@example.com")
    invite_member(db, owner, team.id, "pal@example.com", "member")

    with pytest.raises(Forbidden):
        invite_member(db, member, team.id, "friend@example.com", "member")


def test_remove_member(db, owner, team, make_user):
    make_user(email="pal@example.com")
    membership = invite_member(db, owner, team.id, "pal@example.com", "member")

    remove_member(db, owner, team.id, membership.id)

    assert len(list_team_members(db, owner, team.id)) == 1


def test_owner_cannot_be_removed(db, owner, team):
    owner_row = list_team_members(db, owner, team.id)[0]
    with pytest.raises(Forbidden):
        remove_member(db, owner, team.id, owner_row.id)


def test_remove_unknown_member(db, owner, team):
    with pytest.raises(NotFound):
        remove_member(db, owner, team.id, "no-such-member")


def test_outsiders_see_no_members(db, team, make_user):
    outsider = make_user()
    assert list_team_members(db, outsider, team.id) == []
