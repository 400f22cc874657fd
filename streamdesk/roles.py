from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple


ADMIN = "admin"
LEADER = "livestream-leader"
EMPLOYEE = "livestream-emp"
REPORTER = "livestream-ast"

HOST = "host"
ASSISTANT = "assistant"
SHIFT_ROLES: Tuple[str, ...] = (HOST, ASSISTANT)
LEADER_ROLES = frozenset({ADMIN, LEADER})

ROLE_LABELS: Dict[str, str] = {
    HOST: "Host",
    ASSISTANT: "Assistant",
}

ROLE_COLORS: Dict[str, str] = {
    HOST: "#228be6",
    ASSISTANT: "#40c057",
    "alt": "#ffc107",
    "Other": "#868e96",
}


def normalize_role(role: str) -> str:
    return (role or "").strip().lower()


def parse_roles(value: str | Iterable[str] | None) -> List[str]:
    if value is None:
        return []
    parts = value.split(",") if isinstance(value, str) else list(value)
    return sorted({normalize_role(part) for part in parts if normalize_role(part)})


def format_roles(roles: Iterable[str]) -> str:
    return ", ".join(parse_roles(roles))


def is_leader_role(role: str) -> bool:
    return normalize_role(role) in LEADER_ROLES


def has_leader_access(roles: Iterable[str]) -> bool:
    return any(is_leader_role(role) for role in roles or ())


def shift_role(role: str) -> Optional[str]:
    """Return the canonical shift role ("host"/"assistant") or None when unknown."""
    label = normalize_role(role)
    return label if label in SHIFT_ROLES else None


def can_cover(roles: Iterable[str], role: str) -> bool:
    """True when an employee with ``roles`` may be assigned to a ``role`` slot."""
    normalized = set(parse_roles(roles))
    if normalized & LEADER_ROLES:
        return True
    return normalize_role(role) in normalized


def role_label(role: str) -> str:
    return ROLE_LABELS.get(normalize_role(role), role or "")


def palette_for_role(role: str) -> str:
    return ROLE_COLORS.get(normalize_role(role), ROLE_COLORS["Other"])


@dataclass(frozen=True)
class CurrentUser:
    """Identity of the person driving the dashboard."""

    id: int
    name: str = ""
    roles: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_leader(self) -> bool:
        return has_leader_access(self.roles)

    @property
    def can_report(self) -> bool:
        return self.is_leader or REPORTER in self.roles

    def owns(self, snapshot) -> bool:
        assignee = getattr(snapshot, "assignee", None)
        return assignee is not None and assignee.id == self.id

    @classmethod
    def from_payload(cls, payload: Dict[str, object]) -> "CurrentUser":
        roles = parse_roles(payload.get("roles"))
        return cls(id=int(payload["id"]), name=str(payload.get("name") or ""), roles=tuple(roles))
