"""Helper functions for the application."""
from datetime import date
from flask import jsonify, request
from typing import Any, Optional

def handle_error(error, status_code: int):
    """Handle application errors with consistent format."""
    return jsonify({
        'error': True,
        'message': str(error),
        'status_code': status_code
    }), status_code

def success_response(data: Any = None, message: str = "Success", status_code: int = 200):
    """Return consistent success response."""
    response = {
        'error': False,
        'message': message
    }

    if data is not None:
        response['data'] = data

    return jsonify(response), status_code

def error_response(message: str, status_code: int = 400, **extra):
    """Return consistent error response."""
    body = {
        'error': True,
        'message': message,
        'status_code': status_code
    }
    body.update(extra)
    return jsonify(body), status_code

def get_json_body() -> dict:
    """Request JSON body, or an empty dict."""
    return request.get_json(silent=True) or {}

def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD query/body value."""
    from congregation.utils.errors import ValidationError

    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date: {value}")

def parse_location(data: dict) -> Optional[dict]:
    """Extract ``{'latitude', 'longitude'}`` from a request body.

    Accepts either a ``location`` object or top-level ``latitude``/``longitude``.
    """
    from congregation.utils.errors import ValidationError

    location = data.get('location')
    if location is None and 'latitude' in data and 'longitude' in data:
        location = {'latitude': data['latitude'], 'longitude': data['longitude']}
    if location is None:
        return None

    try:
        return {
            'latitude': float(location['latitude']),
            'longitude': float(location['longitude'])
        }
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Location must include numeric latitude and longitude")

def ordinal(n: int) -> str:
    """1 -> '1st', 2 -> '2nd', 11 -> '11th'."""
    if 10 <= n % 100 <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(n % 10, 'th')
    return f"{n}{suffix}"

def pagination_meta(pagination) -> dict:
    """Paging block for list responses."""
    return {
        'page': pagination.page,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'pages': pagination.pages,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }

def page_args(default_per_page: int = 20, max_per_page: int = 100) -> tuple:
    """``page`` and ``per_page`` query arguments, clamped."""
    page = max(request.args.get('page', 1, type=int), 1)
    per_page = min(max(request.args.get('per_page', default_per_page, type=int), 1), max_per_page)
    return page, per_page
