from portal.constants.permissions import AppRole
from portal.services.matrix import load_matrix, update_matrix, validate_matrices
from portal.services.roles import resolve_role
from scripts.seed_authz import ensure_role_matrices, summarize_roles


def test_seed_is_idempotent_and_complete(isolated_session):
    written = ensure_role_matrices(isolated_session)
    isolated_session.commit()
    assert set(written) == {AppRole.ADMIN, AppRole.USER}
    assert set(validate_matrices(isolated_session)) == {AppRole.ADMIN, AppRole.USER}
    assert ensure_role_matrices(isolated_session) == []


def test_seed_keeps_runtime_edits_unless_reset(isolated_session):
    ensure_role_matrices(isolated_session)
    update_matrix(isolated_session, AppRole.USER, {'can_view_all_tickets': True})
    isolated_session.commit()
    ensure_role_matrices(isolated_session)
    assert load_matrix(isolated_session, AppRole.USER).can_view_all_tickets is True
    ensure_role_matrices(isolated_session, reset=True)
    assert load_matrix(isolated_session, AppRole.USER).can_view_all_tickets is False


def test_role_summary_counts(isolated_session):
    ensure_role_matrices(isolated_session)
    rows = dict((name, count) for name, count, _ in summarize_roles(isolated_session))
    assert rows['admin'] == 23
    assert rows['user'] == 3 + 2 + 2 + 1
    assert resolve_role(isolated_session, 'nobody') == AppRole.USER
