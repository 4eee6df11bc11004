from datetime import datetime, timezone


def utc_now():
    """Current UTC time as a naive datetime, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_z(value):
    return value.isoformat() + 'Z' if value else None
