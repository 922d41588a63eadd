import datetime as dt


def utcnow() -> dt.datetime:
    # naive UTC: одинаково хранится в PostgreSQL и SQLite
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)
