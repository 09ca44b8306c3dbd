import time
from datetime import date, datetime, tzinfo
from datetime import time as dtime


# Current wall-clock time as integer epoch milliseconds. This is the default clock everywhere; tests
# swap in their own callable.
def now_ms() -> int:
    return time.time_ns() // 1_000_000


# Formats a millisecond duration as a clock string. Hours only show up once there are any, so short
# durations read as MM:SS. Negative values clamp to zero.
def format_duration(ms) -> str:
    total_seconds = max(0, int(ms) // 1000)
    hours, rem = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"

# Milliseconds as decimal hours, two places, e.g. 5400000 -> "1.50 h"
def format_duration_hours(ms) -> str:
    return f"{ms_to_hours(ms):.2f} h"

def ms_to_hours(ms) -> float:
    return ms / (1000 * 60 * 60)


#region === Local time helpers ===

# All of these take an optional tzinfo. None means the machine's local zone, which is what the calendar
# and export want in production; tests pass an explicit zone so results don't depend on the host.

def to_datetime(ms, tz: tzinfo | None = None) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz)

def local_day(ms, tz: tzinfo | None = None) -> date:
    return to_datetime(ms, tz).date()

def day_start_ms(day: date, tz: tzinfo | None = None) -> int:
    return int(datetime.combine(day, dtime.min, tzinfo=tz).timestamp() * 1000)

# Last millisecond that still belongs to the given day.
def day_end_ms(day: date, tz: tzinfo | None = None) -> int:
    return int(datetime.combine(day, dtime.max, tzinfo=tz).timestamp() * 1000)

def datetime_to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)

#endregion === Local time helpers ===
