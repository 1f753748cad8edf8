"""Ticket email notifications.

Messages are posted to an HTTP email API (Resend-compatible JSON). Delivery is
fire-and-forget from the caller's point of view: send() logs failures and returns False,
it never raises into the mutation path.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from html import escape
from typing import Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

TYPE_STATUS_UPDATE = 'status_update'
TYPE_ASSIGNMENT = 'assignment'
TYPE_COMPLETION = 'completion'
NOTIFICATION_TYPES = (TYPE_STATUS_UPDATE, TYPE_ASSIGNMENT, TYPE_COMPLETION)


@dataclass(frozen=True)
class NotificationMessage:
    to: str
    ticket_id: int
    ticket_title: str
    customer_name: str
    status: str
    type: str
    assigned_to: Optional[str] = None


def render_notification(msg: NotificationMessage) -> Tuple[str, str]:
    """Return (subject, html) for a message."""
    title = escape(msg.ticket_title)
    name = escape(msg.customer_name)
    status = escape(msg.status)
    if msg.type == TYPE_STATUS_UPDATE:
        subject = f"Ticket Status Update - {msg.ticket_title}"
        html = (
            "<h1>Ticket Status Update</h1>"
            f"<p>Dear {name},</p>"
            "<p>Your service ticket has been updated:</p>"
            f"<ul><li><strong>Ticket:</strong> {title}</li>"
            f"<li><strong>New Status:</strong> {status}</li>"
            f"<li><strong>Ticket ID:</strong> {msg.ticket_id}</li></ul>"
            "<p>Thank you for choosing our services!</p>"
        )
    elif msg.type == TYPE_ASSIGNMENT:
        subject = f"Ticket Assigned - {msg.ticket_title}"
        html = (
            "<h1>New Ticket Assignment</h1>"
            "<p>Dear Team Member,</p>"
            "<p>A new ticket has been assigned to you:</p>"
            f"<ul><li><strong>Ticket:</strong> {title}</li>"
            f"<li><strong>Customer:</strong> {name}</li>"
            f"<li><strong>Status:</strong> {status}</li>"
            f"<li><strong>Ticket ID:</strong> {msg.ticket_id}</li></ul>"
            "<p>Please log in to the system to view the full details.</p>"
        )
    elif msg.type == TYPE_COMPLETION:
        subject = f"Service Completed - {msg.ticket_title}"
        html = (
            "<h1>Service Completed</h1>"
            f"<p>Dear {name},</p>"
            "<p>Great news! Your service ticket has been completed:</p>"
            f"<ul><li><strong>Service:</strong> {title}</li>"
            f"<li><strong>Completed by:</strong> {escape(msg.assigned_to or '')}</li>"
            f"<li><strong>Ticket ID:</strong> {msg.ticket_id}</li></ul>"
            "<p>Thank you for choosing our services. We hope you're satisfied with the work!</p>"
        )
    else:
        raise ValueError(f"Unknown notification type {msg.type!r}")
    return subject, html


class NotificationDispatcher:
    """Posts rendered messages to the email API. Disabled when no api_key is configured."""

    def __init__(self, api_url: str, api_key: str = '', sender: str = 'Service Notifications <notifications@example.com>', timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def send(self, msg: NotificationMessage) -> bool:
        if not msg.to:
            logger.info('Skipping %s notification for ticket %s: no recipient', msg.type, msg.ticket_id)
            return False
        if not self.enabled:
            logger.info('Email delivery disabled; %s notification for ticket %s not sent', msg.type, msg.ticket_id)
            return False
        try:
            subject, html = render_notification(msg)
            payload = {'from': self.sender, 'to': [msg.to], 'subject': subject, 'html': html}
            headers = {'Authorization': f'Bearer {self.api_key}'}
            if self._client is not None:
                response = self._client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            else:
                response = httpx.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            if response.status_code not in (200, 201, 202):
                logger.error('Email API error %s for ticket %s: %s', response.status_code, msg.ticket_id, response.text)
                return False
        except (httpx.HTTPError, ValueError) as e:
            logger.error('Failed to send %s notification for ticket %s: %s', msg.type, msg.ticket_id, e)
            return False
        logger.info('Sent %s notification for ticket %s', msg.type, msg.ticket_id)
        return True


__all__ = [
    'NotificationMessage', 'NotificationDispatcher', 'render_notification', 'NOTIFICATION_TYPES',
    'TYPE_STATUS_UPDATE', 'TYPE_ASSIGNMENT', 'TYPE_COMPLETION',
]
