"""Single UTC clock for every stored date and timestamp.

Settle dates, quote `settled_at`, quote dates and daily rate rows all come
from here, and SQLite's own defaults are UTC too, so "today" means the same
day everywhere.
"""

from datetime import date, datetime

# Matches SQLite's strftime('%Y-%m-%dT%H:%M:%fZ','now'); sorts as text.
_ISO_SECONDS = "%Y-%m-%dT%H:%M:%S"


def utc_now() -> datetime:
    return datetime.utcnow()


def utc_today() -> date:
    return utc_now().date()


def to_iso(moment: datetime) -> str:
    return moment.strftime(_ISO_SECONDS) + f".{moment.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(stamp: str) -> datetime:
    return datetime.strptime(stamp[:19], _ISO_SECONDS)
