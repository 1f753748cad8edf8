from flask import Flask
from portal.errors import AccessDenied, MatrixConfigurationError, TicketNotFound, ValidationFailed
from tests.test_lifecycle_helpers import jwt_headers
from tests.test_utils_seed import new_user_id


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_domain_error_shapes():
    assert AccessDenied('nope').to_dict() == {
        'error': {'status': 403, 'title': 'Forbidden', 'detail': 'nope', 'code': 'ACCESS_DENIED'}
    }
    body = ValidationFailed('bad', details={'field': 'x'}).to_dict()
    assert body['error']['details'] == {'field': 'x'}
    assert TicketNotFound('gone').http_status == 404
    assert MatrixConfigurationError('missing').http_status == 500


def test_internal_error_shape(app_context: Flask, client, monkeypatch):
    import portal.routes.tickets as tickets_mod

    class Boom:
        def visible_tickets(self, *a, **k):
            raise RuntimeError('explode')

    monkeypatch.setattr(tickets_mod, '_gateway', lambda: Boom())
    resp = client.get('/tickets', headers=jwt_headers(new_user_id()))
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['title'] == 'Internal Server Error'
    assert 'explode' not in body['error']['detail']


def test_healthz(client):
    assert client.get('/healthz').get_json() == {'status': 'ok'}
