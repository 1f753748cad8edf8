from __future__ import annotations
from typing import Optional
from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required
from portal import get_db
from portal.decorators.auth import current_user_id
from portal.errors import ValidationFailed
from portal.models.service_ticket import ServiceTicket
from portal.services.tickets import TicketGateway, TicketUploads, Upload
from portal.utils.fsm import FlagGatedTransitions
from portal.utils.listing import (
    apply_filters, apply_multi_sort, apply_pagination, make_cached_list_response, handle_conditional, _iso,
)
from portal.utils.validation import parse_status, parse_datetime, parse_ticket_fields

tickets_bp = Blueprint('tickets', __name__)

SORTABLE = {
    'id': ServiceTicket.id,
    'title': ServiceTicket.title,
    'status': ServiceTicket.status,
    'work_start_date': ServiceTicket.work_start_date,
    'total_amount_cents': ServiceTicket.total_amount_cents,
    'created_at': ServiceTicket.created_at,
    'updated_at': ServiceTicket.updated_at,
}

LIST_FILTERS = {
    'status': {'coerce': parse_status, 'op': lambda q, v: q.filter(ServiceTicket.status==v)},
    'from': {'coerce': lambda v: parse_datetime(v, 'from'), 'op': lambda q, v: q.filter(ServiceTicket.work_start_date >= v)},
    'to': {'coerce': lambda v: parse_datetime(v, 'to'), 'op': lambda q, v: q.filter(ServiceTicket.work_end_date <= v)},
    'user_id': {'op': lambda q, v: q.filter(ServiceTicket.user_id==v)},
}


def _gateway() -> TicketGateway:
    ext = current_app.extensions
    return TicketGateway(
        get_db(),
        ext['attachment_store'],
        ext['notifier'],
        owner_editable_statuses=ext['owner_editable_statuses'],
        transitions=FlagGatedTransitions(allow_self_transition=ext['allow_self_transition']),
        admin_email=current_app.config.get('ADMIN_NOTIFY_EMAIL') or None,
    )


def _request_data() -> dict:
    if request.mimetype == 'multipart/form-data':
        return request.form.to_dict()
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed('JSON object body required')
    return data


def _read_upload(storage) -> Upload:
    return Upload(filename=storage.filename, data=storage.read(), content_type=storage.mimetype)


def _request_uploads() -> Optional[TicketUploads]:
    if not request.files:
        return None
    invoice = request.files.get('invoice_file')
    return TicketUploads(
        before_photos=[_read_upload(f) for f in request.files.getlist('before_photos') if f.filename],
        after_photos=[_read_upload(f) for f in request.files.getlist('after_photos') if f.filename],
        invoice_file=_read_upload(invoice) if invoice is not None and invoice.filename else None,
    )


def _ticket_json(t: ServiceTicket, include_items: bool = True):
    store = current_app.extensions['attachment_store']
    body = {
        'id': t.id,
        'user_id': t.user_id,
        'title': t.title,
        'description': t.description,
        'status': t.status.value,
        'work_start_date': _iso(t.work_start_date),
        'work_end_date': _iso(t.work_end_date),
        'hourly_rate_cents': t.hourly_rate_cents,
        'total_amount_cents': t.total_amount_cents,
        'invoice_number': t.invoice_number,
        'admin_notes': t.admin_notes,
        'before_photos': [{'path': p, 'url': store.get_public_url(p)} for p in t.before_photos or []],
        'after_photos': [{'path': p, 'url': store.get_public_url(p)} for p in t.after_photos or []],
        'invoice_file': {'path': t.invoice_file, 'url': store.get_public_url(t.invoice_file)} if t.invoice_file else None,
        'created_at': _iso(t.created_at),
        'updated_at': _iso(t.updated_at),
    }
    if include_items:
        body['line_items'] = [
            {
                'id': li.id,
                'description': li.description,
                'hours': li.hours,
                'hourly_rate_cents': li.hourly_rate_cents,
                'total_amount_cents': li.total_amount_cents,
            }
            for li in t.line_items
        ]
    return body


@tickets_bp.get('')
@jwt_required()
def list_tickets():
    q = _gateway().visible_tickets(current_user_id())
    q = apply_filters(q, LIST_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, ServiceTicket.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [_ticket_json(t, include_items=False) for t in rows]
    latest_ts = max((t.updated_at for t in rows if t.updated_at), default=None)
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return resp


@tickets_bp.get('/summary')
@jwt_required()
def ticket_summary():
    return _gateway().summarize(current_user_id())


@tickets_bp.post('')
@jwt_required()
def create_ticket():
    fields = parse_ticket_fields(_request_data())
    ticket = _gateway().create_ticket(current_user_id(), fields, _request_uploads())
    return _ticket_json(ticket), 201


@tickets_bp.get('/<int:ticket_id>')
@jwt_required()
def get_ticket(ticket_id: int):
    ticket, caps = _gateway().get_ticket(current_user_id(), ticket_id)
    body = _ticket_json(ticket)
    body['permissions'] = caps
    return body


@tickets_bp.patch('/<int:ticket_id>')
@jwt_required()
def update_ticket(ticket_id: int):
    fields = parse_ticket_fields(_request_data(), partial=True)
    gateway = _gateway()
    ticket = gateway.update_ticket(current_user_id(), ticket_id, fields, _request_uploads())
    return _ticket_json(ticket)


@tickets_bp.post('/<int:ticket_id>/status')
@jwt_required()
def change_ticket_status(ticket_id: int):
    data = _request_data()
    if 'status' not in data:
        raise ValidationFailed('status required')
    new_status = parse_status(data.get('status'))
    ticket = _gateway().change_status(current_user_id(), ticket_id, new_status, admin_notes=data.get('admin_notes'))
    return _ticket_json(ticket)


@tickets_bp.delete('/<int:ticket_id>')
@jwt_required()
def delete_ticket(ticket_id: int):
    _gateway().delete_ticket(current_user_id(), ticket_id)
    return '', 204
