import pytest
from portal.constants.permissions import AppRole, TicketStatus, preset_flags
from portal.errors import AccessDenied, ValidationFailed
from portal.services.matrix import PermissionMatrix
from portal.services.policy import Actor, TicketRef
from portal.utils.fsm import FlagGatedTransitions, assert_initial_status

USER = Actor('owner-1', AppRole.USER)
USER_MATRIX = PermissionMatrix.from_flags(AppRole.USER, preset_flags(AppRole.USER))
ADMIN = Actor('admin-1', AppRole.ADMIN)
ADMIN_MATRIX = PermissionMatrix.from_flags(AppRole.ADMIN, preset_flags(AppRole.ADMIN))


def test_flag_gated_transition_allows_enabled_edge():
    fsm = FlagGatedTransitions()
    ticket = TicketRef('owner-1', TicketStatus.DRAFT)
    assert fsm.assert_can_transition(USER, USER_MATRIX, ticket, TicketStatus.SUBMITTED) is True


def test_flag_gated_transition_blocks_disabled_edge():
    fsm = FlagGatedTransitions()
    ticket = TicketRef('owner-1', TicketStatus.SUBMITTED)
    with pytest.raises(AccessDenied) as exc:
        fsm.assert_can_transition(USER, USER_MATRIX, ticket, TicketStatus.DRAFT)
    assert exc.value.details == {'from': 'submitted', 'to': 'draft'}


def test_self_transition_rejected_by_default():
    fsm = FlagGatedTransitions()
    ticket = TicketRef('owner-1', TicketStatus.DRAFT)
    # Both flags are on for draft, the self edge is still refused
    assert USER_MATRIX.can_change_from[TicketStatus.DRAFT] and USER_MATRIX.can_change_to[TicketStatus.DRAFT]
    with pytest.raises(ValidationFailed):
        fsm.assert_can_transition(USER, USER_MATRIX, ticket, TicketStatus.DRAFT)
    assert not fsm.can_transition(USER, USER_MATRIX, ticket, TicketStatus.DRAFT)


def test_self_transition_can_be_enabled():
    fsm = FlagGatedTransitions(allow_self_transition=True)
    ticket = TicketRef('owner-1', TicketStatus.DRAFT)
    assert fsm.assert_can_transition(USER, USER_MATRIX, ticket, TicketStatus.DRAFT) is True
    assert TicketStatus.DRAFT in fsm.targets(USER, USER_MATRIX, ticket)


def test_admin_targets_are_every_other_status():
    fsm = FlagGatedTransitions()
    ticket = TicketRef('owner-1', TicketStatus.APPROVED_PAID)
    targets = fsm.targets(ADMIN, ADMIN_MATRIX, ticket)
    assert TicketStatus.APPROVED_PAID not in targets
    assert len(targets) == 5


def test_initial_status_helper():
    assert assert_initial_status(TicketStatus.DRAFT) == TicketStatus.DRAFT
    assert assert_initial_status(TicketStatus.SUBMITTED) == TicketStatus.SUBMITTED
    with pytest.raises(ValidationFailed):
        assert_initial_status(TicketStatus.APPROVED_PAID)
