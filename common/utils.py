# common/utils.py

from datetime import date, datetime, timezone
from typing import Optional, Union


def _dt_utc(s: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Parse s into a timezone-aware UTC datetime.
    Accepts:
      - datetime (naive or tz-aware)
      - ISO strings (with or without 'Z')
      - 'YYYY-MM-DD HH:MM' / 'YYYY-MM-DDTHH:MM' / 'YYYY-MM-DD HH:MM:SS'
    """
    if s is None or s == "":
        return None

    if isinstance(s, datetime):
        dt = s
    else:
        s2 = str(s).strip()
        # Normalize trailing 'Z' to +00:00 for fromisoformat
        if s2.endswith("Z"):
            s2 = s2[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s2)
        except ValueError:
            for fmt in ("%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M:%S"):
                try:
                    dt = datetime.strptime(s2, fmt)
                    break
                except ValueError:
                    continue
            else:
                raise ValueError(f"Unparseable datetime: {s!r}")

    # If naive, assume UTC; otherwise convert to UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_of_week(d: date) -> int:
    """Weekday with Sunday=0 .. Saturday=6 (availability rules use this numbering)."""
    return (d.weekday() + 1) % 7
