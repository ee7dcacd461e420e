"""Role hierarchy and capability table.

RANKING
-------
Roles are ordered by a numeric level; a LOWER level means MORE authority:

    owner=1  admin=2  member=3  viewer=4  (anything else)=5

A role string read from storage that is not one of the four known roles
ranks as 5, below viewer, so a corrupt or future role can never outrank
a real one.

WHO MAY ACT ON WHOM
-------------------
Changing someone's role or removing them is an "action on a target".
The checks run in this order:

  1. Nobody acts on themselves (not even the organization's creator).
  2. The creator may act on anyone else.
  3. Otherwise the actor must be owner/admin (level <= 2) and the target
     must rank strictly below the actor.

Every function here is pure; callers supply the facts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from leadcrm.models.organization import Role

UNKNOWN_ROLE_LEVEL = 5

_LEVELS: dict[str, int] = {
    Role.OWNER: 1,
    Role.ADMIN: 2,
    Role.MEMBER: 3,
    Role.VIEWER: 4,
}

# Highest level that may act on others at all.
_MANAGER_LEVEL = 2


def role_level(role: str | None) -> int:
    if role is None:
        return UNKNOWN_ROLE_LEVEL
    return _LEVELS.get(role, UNKNOWN_ROLE_LEVEL)


def parse_role(value: str) -> Role | None:
    try:
        return Role(value)
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class Capabilities:
    role: str | None = None
    is_org_creator: bool = False
    can_create_leads: bool = False
    can_edit_leads: bool = False
    can_delete_leads: bool = False
    can_view_leads: bool = False
    can_create_templates: bool = False
    can_edit_templates: bool = False
    can_delete_templates: bool = False
    can_view_templates: bool = False
    can_invite_members: bool = False
    can_manage_members: bool = False
    can_manage_organization: bool = False
    can_view_members: bool = False
    can_import_leads: bool = False
    can_export_leads: bool = False

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


NO_CAPABILITIES = Capabilities()

_ALL = Capabilities(
    can_create_leads=True,
    can_edit_leads=True,
    can_delete_leads=True,
    can_view_leads=True,
    can_create_templates=True,
    can_edit_templates=True,
    can_delete_templates=True,
    can_view_templates=True,
    can_invite_members=True,
    can_manage_members=True,
    can_manage_organization=True,
    can_view_members=True,
    can_import_leads=True,
    can_export_leads=True,
)

_READ_ONLY = Capabilities(
    can_view_leads=True,
    can_view_templates=True,
    can_view_members=True,
)

_TABLE: dict[Role, Capabilities] = {
    Role.OWNER: _ALL,
    Role.ADMIN: replace(
        _ALL, can_delete_templates=False, can_manage_organization=False
    ),
    Role.MEMBER: Capabilities(
        can_create_leads=True,
        can_edit_leads=True,
        can_view_leads=True,
        can_view_templates=True,
        can_view_members=True,
        can_export_leads=True,
    ),
    Role.VIEWER: _READ_ONLY,
}


def capabilities_for(role: str | None, is_org_creator: bool) -> Capabilities:
    """Capability set for a member holding ``role``.

    The creator gets every capability whatever their stored role. Unknown
    roles fall back to read-only.
    """
    if is_org_creator:
        base = _ALL
    else:
        parsed = parse_role(role) if role is not None else None
        base = _TABLE[parsed] if parsed is not None else _READ_ONLY
    return replace(base, role=role, is_org_creator=is_org_creator)


def act_on_denial(
    acting_role: str | None,
    acting_is_creator: bool,
    acting_is_self: bool,
    target_role: str | None,
) -> str | None:
    """Why the actor may not act on the target, or None if they may."""
    if acting_is_self:
        return "self_action"
    if acting_is_creator:
        return None
    acting = role_level(acting_role)
    if acting > _MANAGER_LEVEL:
        return "insufficient_role"
    if role_level(target_role) <= acting:
        return "target_protected"
    return None


def can_act_on(
    acting_role: str | None,
    acting_is_creator: bool,
    acting_is_self: bool,
    target_role: str | None,
) -> bool:
    return (
        act_on_denial(acting_role, acting_is_creator, acting_is_self, target_role)
        is None
    )


def assignable_roles(acting_role: str | None, acting_is_creator: bool) -> list[Role]:
    """Roles the actor may grant, most senior first."""
    if acting_is_creator or acting_role == Role.OWNER:
        return list(Role)
    acting = role_level(acting_role)
    return [r for r in Role if role_level(r) > acting]
