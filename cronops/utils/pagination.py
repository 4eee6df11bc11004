from cronops.errors import ValidationError

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def _int_arg(args, name, default):
    raw = args.get(name)
    if raw in (None, ''):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def parse_pagination(args):
    """Read page/limit query parameters"""
    page = _int_arg(args, 'page', 1)
    limit = _int_arg(args, 'limit', DEFAULT_LIMIT)
    if page < 1:
        raise ValidationError('page must be at least 1')
    if limit < 1 or limit > MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")
    return page, limit


def paginate(query, page, limit):
    """Run a paginated query; returns (items, pagination metadata)"""
    result = query.paginate(page=page, per_page=limit, error_out=False)
    return result.items, {
        'page': page,
        'limit': limit,
        'total': result.total,
        'totalPages': max(result.pages, 1),
    }
