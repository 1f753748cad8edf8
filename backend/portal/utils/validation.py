from __future__ import annotations
"""Request-boundary parsing helpers.

Raw strings from requests are converted into domain values here, so that malformed input
(unknown status, bad dates, negative amounts) is rejected before it reaches the evaluator.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from portal.constants.permissions import AppRole, TicketStatus
from portal.errors import ValidationFailed


def parse_status(raw: Any, field_name: str = 'status') -> TicketStatus:
    """Return the TicketStatus named by raw or raise ValidationFailed."""
    if isinstance(raw, TicketStatus):
        return raw
    try:
        return TicketStatus(raw)
    except ValueError:
        raise ValidationFailed(f"{field_name} invalid", details={field_name: raw})


def parse_role(raw: Any) -> AppRole:
    try:
        return AppRole(raw)
    except ValueError:
        raise ValidationFailed("role invalid", details={'role': raw})


def parse_datetime(raw: Any, field_name: str) -> datetime:
    if isinstance(raw, datetime):
        dt = raw
    else:
        if not raw or not isinstance(raw, str):
            raise ValidationFailed(f"{field_name} required")
        try:
            dt = datetime.fromisoformat(raw.replace('Z', '+00:00'))
        except ValueError:
            raise ValidationFailed(f"{field_name} must be an ISO 8601 datetime")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_cents(raw: Any, field_name: str) -> int:
    if raw is None or raw == '':
        return 0
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field_name} must be an integer amount in cents")
    if value < 0:
        raise ValidationFailed(f"{field_name} must not be negative")
    return value


def parse_line_items(raw: Any) -> List[Dict[str, Any]]:
    """Accept a list (JSON body) or a JSON-encoded string (multipart form)."""
    if raw is None or raw == '':
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationFailed("line_items must be a JSON list")
    if not isinstance(raw, list):
        raise ValidationFailed("line_items must be a list")
    items = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get('description'):
            raise ValidationFailed(f"line_items[{idx}].description required")
        try:
            hours = float(item.get('hours', 0))
        except (TypeError, ValueError):
            raise ValidationFailed(f"line_items[{idx}].hours invalid")
        if hours < 0:
            raise ValidationFailed(f"line_items[{idx}].hours must not be negative")
        rate = parse_cents(item.get('hourly_rate_cents'), f"line_items[{idx}].hourly_rate_cents")
        total = item.get('total_amount_cents')
        items.append({
            'description': str(item['description']),
            'hours': hours,
            'hourly_rate_cents': rate,
            'total_amount_cents': parse_cents(total, f"line_items[{idx}].total_amount_cents") if total is not None else round(hours * rate),
        })
    return items


TICKET_TEXT_FIELDS = ('title', 'description', 'invoice_number', 'admin_notes')


def parse_ticket_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate ticket fields from a JSON body or form.

    partial=False (create) requires title and the work date range; partial=True (edit)
    only validates the keys present. Unknown keys are ignored.
    """
    fields: Dict[str, Any] = {}
    for key in TICKET_TEXT_FIELDS:
        if key in data:
            value = data.get(key)
            fields[key] = value.strip() if isinstance(value, str) else value
    if not partial or 'title' in data:
        if not fields.get('title'):
            raise ValidationFailed("title required")
    for key in ('work_start_date', 'work_end_date'):
        if not partial or key in data:
            fields[key] = parse_datetime(data.get(key), key)
    for key in ('hourly_rate_cents', 'total_amount_cents'):
        if key in data:
            fields[key] = parse_cents(data.get(key), key)
    if 'line_items' in data:
        fields['line_items'] = parse_line_items(data.get('line_items'))
    for key in ('before_photos', 'after_photos'):
        if key in data:
            kept = data.get(key)
            if isinstance(kept, str):
                try:
                    kept = json.loads(kept)
                except ValueError:
                    raise ValidationFailed(f"{key} must be a list of paths")
            if not isinstance(kept, list) or not all(isinstance(p, str) for p in kept):
                raise ValidationFailed(f"{key} must be a list of paths")
            fields[key] = kept
    if 'remove_invoice_file' in data:
        fields['remove_invoice_file'] = str(data.get('remove_invoice_file')).lower() in ('1', 'true', 'yes')
    if 'status' in data and data.get('status') is not None:
        fields['status'] = parse_status(data.get('status'))
    return fields


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands timezone columns back naive.
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def assert_date_range(start: Optional[datetime], end: Optional[datetime]):
    if start and end and _as_utc(end) < _as_utc(start):
        raise ValidationFailed("work_end_date must not be before work_start_date")

__all__ = [
    'parse_status', 'parse_role', 'parse_datetime', 'parse_cents', 'parse_line_items',
    'parse_ticket_fields', 'assert_date_range',
]
