from __future__ import annotations
from typing import Any, Dict, Iterable, Optional, Tuple
from flask import request, make_response
from sqlalchemy.orm import Query
from portal.config.pagination import normalize_pagination
from portal.errors import ValidationFailed
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)


def _iso(dt: Optional[datetime]) -> str:
    return canonicalize_timestamp(dt).isoformat().replace('+00:00', 'Z') if dt else ''


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def apply_multi_sort(query, sort_expr: Optional[str], allowed: dict, tie_breaker):
    """Apply comma-separated sort tokens ('-field' for descending) plus a tie breaker."""
    if not sort_expr:
        return query.order_by(tie_breaker.desc())
    clauses = []
    for raw in sort_expr.split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token[1:] if desc else token
        col = allowed.get(key)
        if col is None:
            raise ValidationFailed(f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)


def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Dict[str, Any]):
    """specs: { param_name: { 'op': callable(query, value)->query, 'coerce': callable(optional) } }"""
    for name, meta in specs.items():
        val = params.get(name)
        if val is None or val == '':
            continue
        if 'coerce' in meta:
            val = meta['coerce'](val)
        query = meta['op'](query, val)
    return query


def compute_etag(ids: Iterable[int], total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    ids = [r.get('id') for r in rows]
    latest_iso = _iso(latest_ts)
    etag = compute_etag(ids, total, limit, offset, latest_iso)
    resp = make_response({
        'data': rows,
        'pagination': {'total': total, 'limit': limit, 'offset': offset, 'returned': len(rows)},
    })
    resp.headers['ETag'] = etag
    if latest_ts:
        resp.headers['Last-Modified'] = _http_date(canonicalize_timestamp(latest_ts))
    return resp, etag


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Return a 304 response if If-None-Match / If-Modified-Since match, else None.

    If-None-Match takes precedence over If-Modified-Since.
    """
    inm = request.headers.get('If-None-Match')
    if inm:
        if inm.strip('"') != etag_value:
            return None
    else:
        ims_raw = request.headers.get('If-Modified-Since')
        ims_dt = _parse_if_modified_since(ims_raw) if ims_raw else None
        if not (ims_dt and latest_ts and canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE):
            return None
    resp = make_response('', 304)
    resp.headers['ETag'] = etag_value
    if latest_ts:
        resp.headers['Last-Modified'] = _http_date(canonicalize_timestamp(latest_ts))
    return resp
