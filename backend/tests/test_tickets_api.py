import io
import json
import pytest
from flask import Flask
from sqlalchemy.orm import Session
from portal import get_db
from portal.constants.permissions import AppRole, TicketStatus
from portal.models.audit import AuditLog
from portal.models.service_ticket import ServiceTicket
from tests.test_lifecycle_helpers import (
    TICKET_PAYLOAD, assert_status_change, create_ticket_and_assert, exercise_submission_lifecycle, jwt_headers,
)
from tests.test_utils_seed import drop_matrix, ensure_matrix, ensure_profile, new_user_id, seed_admin


@pytest.fixture()
def owner(app_context):
    uid = new_user_id('owner')
    ensure_profile(uid, 'Olga', 'Owner', email='olga@example.com')
    return uid


def test_requires_token(client):
    resp = client.get('/tickets')
    assert resp.status_code == 401


def test_submission_lifecycle(app_context: Flask, client, owner, notifier):
    admin_headers = jwt_headers(seed_admin())
    tid = exercise_submission_lifecycle(client, jwt_headers(owner), admin_headers)
    body = client.get(f'/tickets/{tid}', headers=admin_headers).get_json()
    assert body['status'] == 'approved_paid'
    assert body['admin_notes'] == 'Need photos'
    assert [m.type for m in notifier.sent if m.to == 'olga@example.com'][-1] == 'completion'
    assert len(notifier.of_type('assignment')) == 2
    actions = [a.action for a in get_db().query(AuditLog).filter_by(entity='ServiceTicket', entity_id=str(tid))]
    assert actions.count('TICKET.STATUS') == 5


def test_create_defaults_and_detail_permissions(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    ticket = create_ticket_and_assert(client, headers, line_items=[{'description': 'Labour', 'hours': 4.5, 'hourly_rate_cents': 4500}])
    assert ticket['line_items'][0]['total_amount_cents'] == 20250
    body = client.get(f"/tickets/{ticket['id']}", headers=headers).get_json()
    assert body['user_id'] == owner
    assert body['permissions'] == {
        'can_view': True, 'can_edit': True, 'can_delete': True, 'allowed_transitions': ['submitted'],
    }


def test_create_validation_errors(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    resp = client.post('/tickets', json={'title': 'No dates'}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'VALIDATION_FAILED'
    resp = client.post('/tickets', json=dict(TICKET_PAYLOAD, status='approved_paid'), headers=headers)
    assert resp.status_code == 400
    resp = client.post('/tickets', json=dict(TICKET_PAYLOAD, status='archived'), headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['details'] == {'status': 'archived'}


def test_multipart_create_with_attachments(app_context: Flask, client, owner, attachment_store):
    data = {k: str(v) for k, v in TICKET_PAYLOAD.items()}
    data['line_items'] = json.dumps([{'description': 'Parts', 'hours': 1, 'hourly_rate_cents': 1000}])
    data['before_photos'] = [(io.BytesIO(b'one'), 'one.jpg'), (io.BytesIO(b'two'), 'two.jpg')]
    data['invoice_file'] = (io.BytesIO(b'%PDF-1.4'), 'invoice.pdf')
    resp = client.post('/tickets', data=data, content_type='multipart/form-data', headers=jwt_headers(owner))
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert len(body['before_photos']) == 2
    assert body['before_photos'][0]['url'] == f"https://files.test/{body['before_photos'][0]['path']}"
    assert body['invoice_file']['path'].startswith('invoices/')
    assert len(attachment_store.blobs) == 3


def test_other_users_ticket_is_not_found(app_context: Flask, client, owner):
    ticket = create_ticket_and_assert(client, jwt_headers(owner))
    stranger = jwt_headers(new_user_id('stranger'))
    assert client.get(f"/tickets/{ticket['id']}", headers=stranger).status_code == 404
    assert client.delete(f"/tickets/{ticket['id']}", headers=stranger).status_code == 404
    resp = client.patch(f"/tickets/{ticket['id']}", json={'title': 'Mine now'}, headers=stranger)
    assert resp.status_code == 404
    assert resp.get_json()['error']['code'] == 'TICKET_NOT_FOUND'


def test_owner_edit_blocked_after_submit(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    ticket = create_ticket_and_assert(client, headers)
    resp = client.patch(f"/tickets/{ticket['id']}", json={'title': 'Renamed'}, headers=headers)
    assert resp.status_code == 200 and resp.get_json()['title'] == 'Renamed'
    assert_status_change(client, ticket['id'], headers, 'submitted')
    resp = client.patch(f"/tickets/{ticket['id']}", json={'title': 'Again'}, headers=headers)
    assert resp.status_code == 403
    assert resp.get_json()['error']['code'] == 'ACCESS_DENIED'
    assert client.delete(f"/tickets/{ticket['id']}", headers=headers).status_code == 403


def test_edit_rechecks_status_changed_elsewhere(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    ticket = create_ticket_and_assert(client, headers)
    detail = client.get(f"/tickets/{ticket['id']}", headers=headers).get_json()
    assert detail['permissions']['can_edit']
    with Session(bind=get_db().get_bind()) as other:
        other.get(ServiceTicket, ticket['id']).status = TicketStatus.SUBMITTED
        other.commit()
    resp = client.patch(f"/tickets/{ticket['id']}", json={'title': 'edited after submit'}, headers=headers)
    assert resp.status_code == 403
    assert client.delete(f"/tickets/{ticket['id']}", headers=headers).status_code == 403
    body = client.get(f"/tickets/{ticket['id']}", headers=headers).get_json()
    assert body['status'] == 'submitted' and body['title'] == TICKET_PAYLOAD['title']
    assert not body['permissions']['can_edit']


def test_owner_patch_with_null_admin_notes(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    ticket = create_ticket_and_assert(client, headers)
    resp = client.patch(f"/tickets/{ticket['id']}", json={'title': 'Renamed', 'admin_notes': None}, headers=headers)
    assert resp.status_code == 200 and resp.get_json()['title'] == 'Renamed'
    resp = client.patch(f"/tickets/{ticket['id']}", json={'admin_notes': 'self approved'}, headers=headers)
    assert resp.status_code == 403


def test_status_change_rules(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    ticket = create_ticket_and_assert(client, headers)
    assert_status_change(client, ticket['id'], headers, 'approved_paid', expected_status=403)
    assert_status_change(client, ticket['id'], headers, 'draft', expected_status=400)
    resp = client.post(f"/tickets/{ticket['id']}/status", json={}, headers=headers)
    assert resp.status_code == 400


def test_owner_notes_rejected(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    ticket = create_ticket_and_assert(client, headers)
    assert_status_change(client, ticket['id'], headers, 'submitted', expected_status=403, admin_notes='self approve')


def test_delete_draft_removes_attachments(app_context: Flask, client, owner, attachment_store):
    headers = jwt_headers(owner)
    data = {k: str(v) for k, v in TICKET_PAYLOAD.items()}
    data['after_photos'] = [(io.BytesIO(b'x'), 'x.jpg')]
    created = client.post('/tickets', data=data, content_type='multipart/form-data', headers=headers).get_json()
    resp = client.delete(f"/tickets/{created['id']}", headers=headers)
    assert resp.status_code == 204
    assert attachment_store.delete_calls == [[created['after_photos'][0]['path']]]
    assert get_db().get(ServiceTicket, created['id']) is None


def test_delete_survives_storage_failure(app_context: Flask, client, owner, attachment_store):
    headers = jwt_headers(owner)
    ticket = create_ticket_and_assert(client, headers)
    attachment_store.fail_delete = True
    session = get_db()
    row = session.get(ServiceTicket, ticket['id'])
    row.before_photos = ['before/x.jpg']
    session.commit()
    assert client.delete(f"/tickets/{ticket['id']}", headers=headers).status_code == 204
    assert get_db().get(ServiceTicket, ticket['id']) is None


def test_list_scoping_filters_and_pagination(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    first = create_ticket_and_assert(client, headers, title='First')
    create_ticket_and_assert(client, headers, title='Second')
    assert_status_change(client, first['id'], headers, 'submitted')
    create_ticket_and_assert(client, jwt_headers(new_user_id('other')), title='Not mine')

    body = client.get('/tickets', headers=headers).get_json()
    assert body['pagination']['total'] == 2
    assert {t['user_id'] for t in body['data']} == {owner}

    body = client.get('/tickets?status=submitted', headers=headers).get_json()
    assert [t['title'] for t in body['data']] == ['First']

    body = client.get('/tickets?sort=title&limit=1', headers=headers).get_json()
    assert body['pagination'] == {'total': 2, 'limit': 1, 'offset': 0, 'returned': 1}
    assert body['data'][0]['title'] == 'First'

    assert client.get('/tickets?sort=secret', headers=headers).status_code == 400
    assert client.get('/tickets?status=bogus', headers=headers).status_code == 400
    assert client.get('/tickets?limit=abc', headers=headers).status_code == 400


def test_admin_list_sees_everyone(app_context: Flask, client, owner):
    create_ticket_and_assert(client, jwt_headers(owner))
    admin_headers = jwt_headers(seed_admin())
    body = client.get(f'/tickets?user_id={owner}', headers=admin_headers).get_json()
    assert body['pagination']['total'] == 1


def test_list_conditional_get(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    create_ticket_and_assert(client, headers)
    first = client.get('/tickets', headers=headers)
    etag = first.headers['ETag']
    assert first.headers.get('Last-Modified')
    second = client.get('/tickets', headers=dict(headers, **{'If-None-Match': etag}))
    assert second.status_code == 304
    assert second.headers['ETag'] == etag


def test_summary(app_context: Flask, client, owner):
    headers = jwt_headers(owner)
    ticket = create_ticket_and_assert(client, headers)
    create_ticket_and_assert(client, headers)
    assert_status_change(client, ticket['id'], headers, 'submitted')
    body = client.get('/tickets/summary', headers=headers).get_json()
    assert body['total'] == 2 and body['pending'] == 1
    assert body['by_status']['draft'] == 1


def test_create_denied_when_flag_off(app_context: Flask, client, owner):
    ensure_matrix(AppRole.USER, {'can_create_service_ticket': False})
    resp = client.post('/tickets', json=TICKET_PAYLOAD, headers=jwt_headers(owner))
    assert resp.status_code == 403


def test_missing_matrix_is_reported_as_configuration_error(app_context: Flask, client, owner):
    drop_matrix(AppRole.USER)
    resp = client.get('/tickets', headers=jwt_headers(owner))
    assert resp.status_code == 500
    assert resp.get_json()['error']['code'] == 'CONFIGURATION_ERROR'
