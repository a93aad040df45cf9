from enum import Enum
from typing import Any, Iterable, NamedTuple


class Role(str, Enum):
    STUDENT = "student"
    ROTC_OFFICER = "rotc_officer"
    USC_OFFICER = "usc_officer"
    SUPER_ADMIN = "super_admin"

    @property
    def is_officer(self) -> bool:
        return self in (Role.ROTC_OFFICER, Role.USC_OFFICER)


ROLE_PRIORITY = {
    Role.SUPER_ADMIN: 4,
    Role.ROTC_OFFICER: 3,
    Role.USC_OFFICER: 2,
    Role.STUDENT: 1,
}

CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.STUDENT: frozenset({"view_own_qr"}),
    Role.USC_OFFICER: frozenset({"scan", "manage_students", "view_reports"}),
    Role.ROTC_OFFICER: frozenset({"scan", "manage_students", "view_reports"}),
    Role.SUPER_ADMIN: frozenset(
        {"scan", "manage_students", "view_reports", "manage_events", "issue_pins"}
    ),
}


def highest_role(roles: Iterable[str]) -> Role | None:
    """Pick the highest-priority role when a user holds several."""
    known = [Role(r) for r in roles if r in Role._value2member_map_]
    if not known:
        return None
    return max(known, key=lambda r: ROLE_PRIORITY[r])


class ScanSessionContext(NamedTuple):
    """
    Who is acting and against which event, resolved once per session from
    the bearer token claims.
    """

    role: Role
    subject: str
    event_id: int | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "ScanSessionContext":
        raw_event = claims.get("event_id")
        return cls(
            role=Role(claims.get("role", Role.SUPER_ADMIN.value)),
            subject=str(claims.get("sub", "")),
            event_id=int(raw_event) if raw_event is not None else None,
        )

    def has(self, capability: str) -> bool:
        return capability in CAPABILITIES[self.role]

    @property
    def can_scan(self) -> bool:
        return self.has("scan")

    @property
    def can_manage_events(self) -> bool:
        return self.has("manage_events")

    @property
    def can_issue_pins(self) -> bool:
        return self.has("issue_pins")

    @property
    def can_manage_students(self) -> bool:
        return self.has("manage_students")

    @property
    def can_view_reports(self) -> bool:
        return self.has("view_reports")
