"""Ticket mutation gateway.

The only path through which service tickets are created, edited, moved between statuses
or deleted. Every call takes the authenticated user id explicitly, resolves the role,
loads the matrix and re-runs the evaluator; whatever the UI showed is never trusted.

Failure policy:
  - role / matrix lookup failures deny the request (fail closed) and are logged;
  - a missing matrix row propagates as MatrixConfigurationError;
  - attachment cleanup failures are logged and never block the record mutation;
  - if the record write fails after uploads, the uploads are left orphaned (logged).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from portal.constants.permissions import TicketStatus, ALL_STATUSES
from portal.errors import AccessDenied, PermissionLookupError, RoleLookupError, TicketNotFound, ValidationFailed
from portal.models.authz import Profile
from portal.models.service_ticket import ServiceTicket, LineItem
from portal.services.audit import add_audit
from portal.services.attachments import generate_path, BEFORE_FOLDER, AFTER_FOLDER, INVOICE_FOLDER
from portal.services.matrix import PermissionMatrix, load_matrix
from portal.services.notifications import NotificationMessage, TYPE_ASSIGNMENT, TYPE_COMPLETION, TYPE_STATUS_UPDATE
from portal.services.policy import (
    Actor, DEFAULT_OWNER_EDITABLE_STATUSES, can_create, can_delete, can_edit, can_view, ticket_capabilities,
)
from portal.services.roles import resolve_role
from portal.utils.fsm import FlagGatedTransitions, assert_initial_status
from portal.utils.validation import assert_date_range

logger = logging.getLogger(__name__)

SIMPLE_FIELDS = ('title', 'description', 'work_start_date', 'work_end_date', 'hourly_rate_cents', 'total_amount_cents', 'invoice_number', 'admin_notes')


def _screen_admin_notes(fields: Dict[str, Any], matrix: PermissionMatrix, stored: Optional[str]) -> Dict[str, Any]:
    """Deny non-admin writes to admin_notes. A null or unchanged value is dropped instead."""
    if 'admin_notes' not in fields or matrix.can_edit_all_tickets:
        return fields
    value = fields['admin_notes']
    if value is None or value == stored or (stored is None and value == ''):
        return {k: v for k, v in fields.items() if k != 'admin_notes'}
    raise AccessDenied('Not allowed to write admin notes')


@dataclass(frozen=True)
class Upload:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class TicketUploads:
    before_photos: List[Upload] = field(default_factory=list)
    after_photos: List[Upload] = field(default_factory=list)
    invoice_file: Optional[Upload] = None


class TicketGateway:
    def __init__(self, session, attachments, notifier=None, owner_editable_statuses: Iterable[TicketStatus] = DEFAULT_OWNER_EDITABLE_STATUSES, transitions: Optional[FlagGatedTransitions] = None, admin_email: Optional[str] = None):
        self.session = session
        self.attachments = attachments
        self.notifier = notifier
        self.owner_editable_statuses = frozenset(owner_editable_statuses)
        self.transitions = transitions or FlagGatedTransitions()
        self.admin_email = admin_email

    # ---------- Authorization ---------- #

    def authorize(self, user_id) -> Tuple[Actor, PermissionMatrix]:
        """Resolve the actor's role and matrix, failing closed on lookup errors."""
        try:
            role = resolve_role(self.session, user_id)
            matrix = load_matrix(self.session, role)
        except (RoleLookupError, PermissionLookupError) as e:
            self.session.rollback()
            logger.warning('Denying request for user %s: %s', user_id, e.message)
            raise AccessDenied('Unable to verify permissions') from e
        return Actor(user_id=str(user_id), role=role), matrix

    def capabilities(self, actor: Actor, matrix: PermissionMatrix, ticket) -> Dict[str, Any]:
        caps = ticket_capabilities(actor, matrix, ticket, self.owner_editable_statuses)
        caps['allowed_transitions'] = [s.value for s in self.transitions.targets(actor, matrix, ticket)]
        return caps

    def _load_visible(self, actor: Actor, matrix: PermissionMatrix, ticket_id) -> ServiceTicket:
        # Always re-read: the identity map may hold a row from an earlier request.
        ticket = self.session.get(ServiceTicket, ticket_id, populate_existing=True)
        # Tickets the actor may not see are reported as missing.
        if ticket is None or not can_view(actor, matrix, ticket):
            raise TicketNotFound(f'Ticket {ticket_id} not found')
        return ticket

    # ---------- Reads ---------- #

    def get_ticket(self, user_id, ticket_id) -> Tuple[ServiceTicket, Dict[str, Any]]:
        actor, matrix = self.authorize(user_id)
        ticket = self._load_visible(actor, matrix, ticket_id)
        return ticket, self.capabilities(actor, matrix, ticket)

    def visible_tickets(self, user_id):
        """Query of every ticket the user may view."""
        actor, matrix = self.authorize(user_id)
        q = self.session.query(ServiceTicket)
        if matrix.can_view_all_tickets:
            return q
        if matrix.can_view_own_tickets:
            return q.filter(ServiceTicket.user_id==actor.user_id)
        raise AccessDenied('Not allowed to view tickets')

    def summarize(self, user_id) -> Dict[str, Any]:
        q = self.visible_tickets(user_id)
        rows = q.with_entities(ServiceTicket.status, func.count(ServiceTicket.id)).group_by(ServiceTicket.status).all()
        by_status = {s.value: 0 for s in ALL_STATUSES}
        for status, count in rows:
            by_status[TicketStatus(status).value] = count
        return {
            'total': sum(by_status.values()),
            'pending': by_status['submitted'] + by_status['additional_info_requested'],
            'approved': by_status['approved_not_paid'] + by_status['approved_paid'],
            'declined': by_status['declined'],
            'by_status': by_status,
        }

    # ---------- Mutations ---------- #

    def create_ticket(self, user_id, fields: Dict[str, Any], uploads: Optional[TicketUploads] = None) -> ServiceTicket:
        actor, matrix = self.authorize(user_id)
        if not can_create(actor, matrix):
            raise AccessDenied('Not allowed to create service tickets')
        status = assert_initial_status(fields.get('status') or TicketStatus.DRAFT)
        fields = _screen_admin_notes(fields, matrix, None)
        assert_date_range(fields.get('work_start_date'), fields.get('work_end_date'))

        before, after, invoice = self._store_uploads(uploads)
        ticket = ServiceTicket(
            user_id=actor.user_id,
            status=status,
            before_photos=before,
            after_photos=after,
            invoice_file=invoice,
            **{k: fields[k] for k in SIMPLE_FIELDS if k in fields},
        )
        for item in fields.get('line_items', []):
            ticket.line_items.append(LineItem(**item))
        stored = before + after + ([invoice] if invoice else [])
        try:
            self.session.add(ticket)
            self.session.flush()
            add_audit(self.session, 'TICKET.CREATE', actor.user_id, actor.role.value, 'ServiceTicket', ticket.id,
                      {'status': status.value, 'attachments': len(stored)})
            self.session.commit()
        except Exception:
            self.session.rollback()
            if stored:
                logger.error('Ticket insert failed; orphaned attachments: %s', stored)
            raise
        logger.info('Ticket %s created by %s in %s', ticket.id, actor.user_id, status.value)
        if status == TicketStatus.SUBMITTED:
            self._notify_submitted(ticket)
        return ticket

    def update_ticket(self, user_id, ticket_id, fields: Dict[str, Any], uploads: Optional[TicketUploads] = None) -> ServiceTicket:
        actor, matrix = self.authorize(user_id)
        ticket = self._load_visible(actor, matrix, ticket_id)
        if not can_edit(actor, matrix, ticket, self.owner_editable_statuses):
            raise AccessDenied("You don't have permission to edit this ticket")
        old_status = ticket.status
        new_status = fields.get('status')
        if new_status is not None and new_status != old_status:
            self.transitions.assert_can_transition(actor, matrix, ticket, new_status)
        fields = _screen_admin_notes(fields, matrix, ticket.admin_notes)
        assert_date_range(
            fields.get('work_start_date', ticket.work_start_date),
            fields.get('work_end_date', ticket.work_end_date),
        )

        removed: List[str] = []
        kept_photos: Dict[str, List[str]] = {}
        for key in ('before_photos', 'after_photos'):
            current = list(getattr(ticket, key) or [])
            kept = fields.get(key, current)
            unknown = [p for p in kept if p not in current]
            if unknown:
                raise ValidationFailed(f'{key} may only keep existing attachments', details={'unknown': unknown})
            removed.extend(p for p in current if p not in kept)
            kept_photos[key] = list(kept)

        before_new, after_new, invoice_new = self._store_uploads(uploads)
        stored = before_new + after_new + ([invoice_new] if invoice_new else [])

        changed = sorted(k for k in SIMPLE_FIELDS if k in fields and getattr(ticket, k) != fields[k])
        for key in SIMPLE_FIELDS:
            if key in fields:
                setattr(ticket, key, fields[key])
        # Assign new lists so the JSON columns register as dirty.
        ticket.before_photos = kept_photos['before_photos'] + before_new
        ticket.after_photos = kept_photos['after_photos'] + after_new
        if invoice_new:
            if ticket.invoice_file:
                removed.append(ticket.invoice_file)
            ticket.invoice_file = invoice_new
        elif fields.get('remove_invoice_file') and ticket.invoice_file:
            removed.append(ticket.invoice_file)
            ticket.invoice_file = None
        if 'line_items' in fields:
            ticket.line_items = [LineItem(**item) for item in fields['line_items']]
            changed.append('line_items')
        meta: Dict[str, Any] = {'fields': changed, 'added_attachments': len(stored), 'removed_attachments': len(removed)}
        if new_status is not None and new_status != old_status:
            ticket.status = new_status
            meta['changes'] = {'status': {'before': old_status.value, 'after': new_status.value}}
        try:
            add_audit(self.session, 'TICKET.UPDATE', actor.user_id, actor.role.value, 'ServiceTicket', ticket.id, meta)
            self.session.commit()
        except Exception:
            self.session.rollback()
            if stored:
                logger.error('Ticket %s update failed; orphaned attachments: %s', ticket_id, stored)
            raise
        self._cleanup(removed)
        if ticket.status != old_status:
            self._notify_status_change(ticket)
        return ticket

    def change_status(self, user_id, ticket_id, new_status: TicketStatus, admin_notes: Optional[str] = None) -> ServiceTicket:
        actor, matrix = self.authorize(user_id)
        ticket = self._load_visible(actor, matrix, ticket_id)
        self.transitions.assert_can_transition(actor, matrix, ticket, new_status)
        if admin_notes is not None and admin_notes != ticket.admin_notes:
            if not matrix.can_edit_all_tickets:
                raise AccessDenied('Not allowed to write admin notes')
            ticket.admin_notes = admin_notes
        old_status = ticket.status
        ticket.status = new_status
        add_audit(self.session, 'TICKET.STATUS', actor.user_id, actor.role.value, 'ServiceTicket', ticket.id,
                  {'changes': {'status': {'before': old_status.value, 'after': new_status.value}}})
        self.session.commit()
        logger.info('Ticket %s status %s -> %s by %s', ticket.id, old_status.value, new_status.value, actor.user_id)
        self._notify_status_change(ticket)
        return ticket

    def delete_ticket(self, user_id, ticket_id) -> List[str]:
        """Delete the ticket record and (best effort) its attachments. Returns the attachment paths."""
        actor, matrix = self.authorize(user_id)
        ticket = self._load_visible(actor, matrix, ticket_id)
        if not can_delete(actor, matrix, ticket):
            raise AccessDenied("You don't have permission to delete tickets in this status")
        paths = ticket.attachment_paths()
        add_audit(self.session, 'TICKET.DELETE', actor.user_id, actor.role.value, 'ServiceTicket', ticket.id,
                  {'status': ticket.status.value, 'attachments': len(paths)})
        self.session.delete(ticket)
        self.session.commit()
        logger.info('Ticket %s deleted by %s', ticket_id, actor.user_id)
        # Record first, blobs after.
        self._cleanup(paths)
        return paths

    # ---------- Collaborators ---------- #

    def _store_uploads(self, uploads: Optional[TicketUploads]) -> Tuple[List[str], List[str], Optional[str]]:
        """Upload every file, returning (before, after, invoice) paths."""
        before: List[str] = []
        after: List[str] = []
        invoice: Optional[str] = None
        if uploads is None:
            return before, after, invoice
        stored: List[str] = []
        try:
            for folder, files, out in ((BEFORE_FOLDER, uploads.before_photos, before), (AFTER_FOLDER, uploads.after_photos, after)):
                for upload in files:
                    path = self.attachments.put(generate_path(folder, upload.filename), upload.data, upload.content_type)
                    out.append(path)
                    stored.append(path)
            if uploads.invoice_file is not None:
                f = uploads.invoice_file
                invoice = self.attachments.put(generate_path(INVOICE_FOLDER, f.filename), f.data, f.content_type)
        except Exception:
            if stored:
                logger.error('Upload failed; orphaned attachments: %s', stored)
            raise
        return before, after, invoice

    def _cleanup(self, paths: List[str]):
        if not paths:
            return
        try:
            self.attachments.delete(paths)
        except Exception:
            logger.exception('Attachment cleanup failed for %s; continuing', paths)

    def _owner_contact(self, ticket: ServiceTicket) -> Tuple[Optional[str], str]:
        profile = self.session.query(Profile).filter_by(user_id=ticket.user_id).one_or_none()
        if profile is None:
            return None, 'Customer'
        return profile.email, profile.full_name or 'Customer'

    def _send(self, msg: NotificationMessage):
        if self.notifier is None:
            return
        try:
            self.notifier.send(msg)
        except Exception:
            logger.exception('Notification dispatch failed for ticket %s', msg.ticket_id)

    def _notify_status_change(self, ticket: ServiceTicket):
        email, name = self._owner_contact(ticket)
        kind = TYPE_COMPLETION if ticket.status == TicketStatus.APPROVED_PAID else TYPE_STATUS_UPDATE
        if email:
            self._send(NotificationMessage(
                to=email, ticket_id=ticket.id, ticket_title=ticket.title, customer_name=name,
                status=ticket.status.value, type=kind, assigned_to=name if kind == TYPE_COMPLETION else None,
            ))
        if ticket.status == TicketStatus.SUBMITTED:
            self._notify_submitted(ticket)

    def _notify_submitted(self, ticket: ServiceTicket):
        if not self.admin_email:
            return
        _, name = self._owner_contact(ticket)
        self._send(NotificationMessage(
            to=self.admin_email, ticket_id=ticket.id, ticket_title=ticket.title, customer_name=name,
            status=ticket.status.value, type=TYPE_ASSIGNMENT,
        ))


__all__ = ['TicketGateway', 'TicketUploads', 'Upload']
