"""Permission evaluator.

Pure functions answering "may this actor do X to this ticket". Inputs are an explicit Actor,
an already loaded PermissionMatrix and any object exposing ``user_id`` and ``status``
(a ServiceTicket row or a TicketRef). Nothing here touches the database or request state.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List
from portal.constants.permissions import AppRole, TicketStatus, ALL_STATUSES
from portal.services.matrix import PermissionMatrix

DEFAULT_OWNER_EDITABLE_STATUSES = frozenset({TicketStatus.DRAFT})


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: AppRole

    @property
    def is_admin(self) -> bool:
        return self.role == AppRole.ADMIN


@dataclass(frozen=True)
class TicketRef:
    user_id: str
    status: TicketStatus


def is_owner(actor: Actor, ticket) -> bool:
    return str(ticket.user_id) == str(actor.user_id)


def can_create(actor: Actor, matrix: PermissionMatrix) -> bool:
    return matrix.can_create_service_ticket


def can_view(actor: Actor, matrix: PermissionMatrix, ticket) -> bool:
    return matrix.can_view_all_tickets or (matrix.can_view_own_tickets and is_owner(actor, ticket))


def can_edit(actor: Actor, matrix: PermissionMatrix, ticket, owner_editable_statuses: Iterable[TicketStatus] = DEFAULT_OWNER_EDITABLE_STATUSES) -> bool:
    # Owners edit only while the ticket is still theirs to change; edit-all bypasses status.
    if matrix.can_edit_all_tickets:
        return True
    return is_owner(actor, ticket) and matrix.can_edit_own_tickets and ticket.status in owner_editable_statuses


def can_delete(actor: Actor, matrix: PermissionMatrix, ticket) -> bool:
    if not matrix.can_delete_in[ticket.status]:
        return False
    if actor.is_admin:
        return True
    return is_owner(actor, ticket) and ticket.status == TicketStatus.DRAFT


def can_change_status(actor: Actor, matrix: PermissionMatrix, ticket, new_status: TicketStatus) -> bool:
    """Leaving the current status and entering the new one are checked independently."""
    return matrix.can_change_from[ticket.status] and matrix.can_change_to[new_status]


def allowed_transitions(actor: Actor, matrix: PermissionMatrix, ticket, include_current: bool = False) -> List[TicketStatus]:
    return [
        s for s in ALL_STATUSES
        if (include_current or s != ticket.status) and can_change_status(actor, matrix, ticket, s)
    ]


def ticket_capabilities(actor: Actor, matrix: PermissionMatrix, ticket, owner_editable_statuses: Iterable[TicketStatus] = DEFAULT_OWNER_EDITABLE_STATUSES, include_current: bool = False) -> Dict[str, Any]:
    """Evaluator answers bundled for read surfaces (detail view, edit form)."""
    return {
        'can_view': can_view(actor, matrix, ticket),
        'can_edit': can_edit(actor, matrix, ticket, owner_editable_statuses),
        'can_delete': can_delete(actor, matrix, ticket),
        'allowed_transitions': [s.value for s in allowed_transitions(actor, matrix, ticket, include_current)],
    }


__all__ = [
    'Actor', 'TicketRef', 'DEFAULT_OWNER_EDITABLE_STATUSES', 'is_owner', 'can_create', 'can_view',
    'can_edit', 'can_delete', 'can_change_status', 'allowed_transitions', 'ticket_capabilities',
]
