from __future__ import annotations
"""Flag-gated status transitions for service tickets.

Unlike a fixed adjacency graph, every (current, target) pair over TicketStatus is a
candidate edge; it is enabled for an actor iff the role matrix lets them leave the
current status and enter the target one. Usage:
    from portal.utils.fsm import FlagGatedTransitions
    TICKET_FSM = FlagGatedTransitions()
    TICKET_FSM.assert_can_transition(actor, matrix, ticket, TicketStatus.SUBMITTED)

Raises ValidationFailed for a self-transition (unless allowed) and AccessDenied when the
matrix does not enable the edge.
"""
from typing import List
from portal.constants.permissions import TicketStatus, ALL_STATUSES
from portal.errors import AccessDenied, ValidationFailed
from portal.services.policy import can_change_status

INITIAL_STATUSES = (TicketStatus.DRAFT, TicketStatus.SUBMITTED)


class FlagGatedTransitions:
    def __init__(self, allow_self_transition: bool = False, field_name: str = 'status'):
        self.allow_self_transition = allow_self_transition
        self.field_name = field_name

    def can_transition(self, actor, matrix, ticket, target: TicketStatus) -> bool:
        if target == ticket.status and not self.allow_self_transition:
            return False
        return can_change_status(actor, matrix, ticket, target)

    def targets(self, actor, matrix, ticket) -> List[TicketStatus]:
        return [s for s in ALL_STATUSES if self.can_transition(actor, matrix, ticket, s)]

    def assert_can_transition(self, actor, matrix, ticket, target: TicketStatus):
        current = ticket.status
        if target == current and not self.allow_self_transition:
            raise ValidationFailed(f"Ticket {self.field_name} is already {current.value}")
        if not can_change_status(actor, matrix, ticket, target):
            raise AccessDenied(
                f"Not allowed to change {self.field_name} {current.value} -> {target.value}",
                details={'from': current.value, 'to': target.value},
            )
        return True


def assert_initial_status(status: TicketStatus) -> TicketStatus:
    if status not in INITIAL_STATUSES:
        raise ValidationFailed(
            f"New tickets start as {' or '.join(s.value for s in INITIAL_STATUSES)}",
            details={'status': status.value},
        )
    return status

__all__ = ['FlagGatedTransitions', 'INITIAL_STATUSES', 'assert_initial_status']
