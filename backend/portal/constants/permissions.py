"""Central enum-like definitions for roles, ticket statuses and matrix flag names.
Flag names are part of the role_permissions table contract; never rename them silently,
an external matrix editor depends on them.
"""
from __future__ import annotations
from enum import Enum
from typing import Dict, List


class AppRole(str, Enum):
    ADMIN = 'admin'
    USER = 'user'


class TicketStatus(str, Enum):
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    ADDITIONAL_INFO_REQUESTED = 'additional_info_requested'
    APPROVED_NOT_PAID = 'approved_not_paid'
    APPROVED_PAID = 'approved_paid'
    DECLINED = 'declined'


ALL_STATUSES = tuple(TicketStatus)
ALL_ROLES = tuple(AppRole)

CRUD_FLAGS = (
    'can_create_service_ticket',
    'can_view_own_tickets',
    'can_view_all_tickets',
    'can_edit_own_tickets',
    'can_edit_all_tickets',
)


def change_to_flag(status: TicketStatus) -> str:
    return f"can_change_to_{status.value}"


def change_from_flag(status: TicketStatus) -> str:
    return f"can_change_from_{status.value}"


def delete_flag(status: TicketStatus) -> str:
    return f"can_delete_{status.value}"


# Per-status column names, computed once. Matrix loading maps them onto TicketStatus keys.
CHANGE_TO_FLAGS: Dict[TicketStatus, str] = {s: change_to_flag(s) for s in ALL_STATUSES}
CHANGE_FROM_FLAGS: Dict[TicketStatus, str] = {s: change_from_flag(s) for s in ALL_STATUSES}
DELETE_FLAGS: Dict[TicketStatus, str] = {s: delete_flag(s) for s in ALL_STATUSES}


def build_all_flag_names() -> List[str]:
    names: List[str] = list(CRUD_FLAGS)
    for status in ALL_STATUSES:
        names.append(CHANGE_TO_FLAGS[status])
        names.append(CHANGE_FROM_FLAGS[status])
        names.append(DELETE_FLAGS[status])
    return names

ALL_FLAG_NAMES = build_all_flag_names()

# Default matrix rows seeded by scripts/seed_authz.py. '*' grants the whole category.
ROLE_PRESETS: Dict[str, Dict[str, List[str]]] = {
    'admin': {
        'crud': ['*'],
        'change_from': ['*'],
        'change_to': ['*'],
        'delete': ['*'],
    },
    # Providers write drafts, submit them, and answer info requests.
    'user': {
        'crud': ['can_create_service_ticket', 'can_view_own_tickets', 'can_edit_own_tickets'],
        'change_from': ['draft', 'additional_info_requested'],
        'change_to': ['draft', 'submitted'],
        'delete': ['draft'],
    },
}


def preset_flags(role: str) -> Dict[str, bool]:
    """Expand a ROLE_PRESETS entry into a full {flag_name: bool} row."""
    preset = ROLE_PRESETS[role]
    flags = {name: False for name in ALL_FLAG_NAMES}
    crud = preset.get('crud', [])
    for name in CRUD_FLAGS:
        flags[name] = '*' in crud or name in crud
    for category, names in (('change_from', CHANGE_FROM_FLAGS), ('change_to', CHANGE_TO_FLAGS), ('delete', DELETE_FLAGS)):
        wanted = preset.get(category, [])
        for status, name in names.items():
            flags[name] = '*' in wanted or status.value in wanted
    return flags
