"""
Team collaboration: create teams on the team plan, invite existing users,
remove members.
"""

import logging
import re
from typing import List, Optional

from sqlalchemy.orm import Session

from code_roast.auth import EMAIL_PATTERN
from code_roast.billing import PLAN_TEAM
from code_roast.entities import Team, TeamMember, User
from code_roast.errors import Forbidden, NotFound, ValidationError
from code_roast.models import Entitlement, TeamInfo, TeamMemberInfo

logger = logging.getLogger(__name__)

INVITABLE_ROLES = ("member", "admin")
MANAGER_ROLES = ("owner", "admin")


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    return slug.strip("-")


def _membership(db: Session, user_id: str, team_id: str) -> Optional[TeamMember]:
    return (
        db.query(TeamMember)
        .filter(TeamMember.user_id == user_id, TeamMember.team_id == team_id)
        .one_or_none()
    )


def _require_manager(db: Session, user_id: str, team_id: str, action: str) -> None:
    member = _membership(db, user_id, team_id)
    if member is None or member.role not in MANAGER_ROLES:
        raise Forbidden(f"You don't have permission to {action} this team")


def create_team(db: Session, user_id: str, name: Optional[str], entitlement: Entitlement) -> Team:
    name = (name or "").strip()
    if len(name) < 2:
        raise ValidationError({"name": ["Team name must be at least 2 characters"]})

    if entitlement.plan != PLAN_TEAM:
        raise Forbidden("You need a team subscription to create a team", upgrade_required=True)

    slug = slugify(name)
    if not slug:
        raise ValidationError({"name": ["Team name must contain letters or digits"]})
    if db.query(Team).filter(Team.slug == slug).one_or_none() is not None:
        raise ValidationError({"name": ["A team with this name already exists"]})

    team = Team(name=name, slug=slug)
    team.members.append(TeamMember(user_id=user_id, role="owner"))
    db.add(team)
    db.commit()
    logger.info("Team %s created by %s", slug, user_id)
    return team


def invite_member(db: Session, user_id: str, team_id: str, email: Optional[str], role: Optional[str]) -> TeamMember:
    errors = {}
    email = (email or "").strip()
    if not EMAIL_PATTERN.fullmatch(email):
        errors["email"] = ["Please enter a valid email"]
    if role not in INVITABLE_ROLES:
        errors["role"] = ["Role must be member or admin"]
    if errors:
        raise ValidationError(errors)

    _require_manager(db, user_id, team_id, "invite members to")

    invited = db.query(User).filter(User.email == email).one_or_none()
    if invited is None:
        raise NotFound("User with this email doesn't exist")

    if _membership(db, invited.id, team_id) is not None:
        raise ValidationError({"email": ["User is already a member of this team"]})

    member = TeamMember(team_id=team_id, user_id=invited.id, role=role)
    db.add(member)
    db.commit()
    return member


def remove_member(db: Session, user_id: str, team_id: str, member_id: str) -> None:
    _require_manager(db, user_id, team_id, "remove members from")

    member = (
        db.query(TeamMember)
        .filter(TeamMember.id == member_id, TeamMember.team_id == team_id)
        .one_or_none()
    )
    if member is None:
        raise NotFound("Team member not found")
    if member.role == "owner":
        raise Forbidden("You cannot remove the team owner")

    db.delete(member)
    db.commit()


def list_user_teams(db: Session, user_id: str) -> List[TeamInfo]:
    rows = (
        db.query(TeamMember, Team)
        .join(Team, Team.id == TeamMember.team_id)
        .filter(TeamMember.user_id == user_id)
        .order_by(Team.created_at)
        .all()
    )
    return [TeamInfo(id=team.id, name=team.name, slug=team.slug, role=member.role)
            for member, team in rows]


def list_team_members(db: Session, user_id: str, team_id: str) -> List[TeamMemberInfo]:
    """Members of a team; empty unless the caller belongs to it."""
    if _membership(db, user_id, team_id) is None:
        return []

    rows = (
        db.query(TeamMember, User)
        .join(User, User.id == TeamMember.user_id)
        .filter(TeamMember.team_id == team_id)
        .order_by(TeamMember.created_at)
        .all()
    )
    return [
        TeamMemberInfo(id=member.id, user_id=user.id, name=user.name, email=user.email, role=member.role)
        for member, user in rows
    ]
