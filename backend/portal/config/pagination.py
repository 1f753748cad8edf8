from portal.errors import ValidationFailed

# Ticket lists are photo-heavy; keep pages small.
DEFAULT_TICKET_PAGE = 25
MAX_TICKET_PAGE = 100


def normalize_pagination(limit_raw, offset_raw, default_limit: int = DEFAULT_TICKET_PAGE, max_limit: int = MAX_TICKET_PAGE):
    """Clamp limit/offset query values; non-integers raise ValidationFailed."""
    try:
        limit = int(limit_raw) if limit_raw not in (None, '') else default_limit
        offset = int(offset_raw) if offset_raw not in (None, '') else 0
    except ValueError:
        raise ValidationFailed('limit/offset must be int')
    return max(1, min(limit, max_limit)), max(0, offset)
