"""Paged list responses with ETag / Last-Modified validators."""
from __future__ import annotations
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime
from typing import Iterable, Optional, Tuple

from flask import abort, current_app, make_response, request
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from storefront.config.pagination import DEFAULT_LIMIT, MAX_LIMIT, page_window

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)


def paginate(session: Session, stmt: Select) -> Tuple[list, int, int, int]:
    """Execute ``stmt`` with limit/offset from the query string; rows are ORM entities."""
    try:
        limit, offset = page_window(
            request.args.get('limit'), request.args.get('offset'),
            default_limit=current_app.config.get('LIST_DEFAULT_LIMIT') or DEFAULT_LIMIT,
            max_limit=current_app.config.get('LIST_MAX_LIMIT') or MAX_LIMIT,
        )
    except ValueError as e:
        abort(400, description=str(e))
    total = session.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = session.execute(stmt.offset(offset).limit(limit)).scalars().all()
    return rows, total, limit, offset


def compute_etag(ids: Iterable, total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    ids = [r.get('id') for r in rows]
    latest_ts_c = canonicalize_timestamp(latest_ts) if isinstance(latest_ts, datetime) else None
    latest_iso = latest_ts_c.isoformat().replace('+00:00', 'Z') if latest_ts_c else ''
    etag = compute_etag(ids, total, limit, offset, latest_iso)
    resp = make_response(build_list_payload(rows, total, limit, offset))
    resp.headers['ETag'] = etag
    if latest_ts_c:
        resp.headers['Last-Modified'] = _http_date(latest_ts_c)
    return resp, etag


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt and dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Evaluate conditional request headers; If-None-Match takes precedence over If-Modified-Since.

    Returns a 304 response object if conditions are satisfied, else None.
    """
    inm = request.headers.get('If-None-Match')
    if inm and inm.strip('"') == etag_value:
        resp = make_response('', 304)
        resp.headers['ETag'] = etag_value
        return resp
    ims_raw = request.headers.get('If-Modified-Since')
    if ims_raw and latest_ts:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt and canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
            resp = make_response('', 304)
            resp.headers['ETag'] = etag_value
            return resp
    return None


def list_response(rows_json: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    """Paged JSON list with ETag / Last-Modified, or a bare 304 when the client copy is current."""
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return resp


__all__ = ['paginate', 'compute_etag', 'build_list_payload', 'make_cached_list_response', 'handle_conditional', 'list_response']
