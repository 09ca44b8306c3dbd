from timeflow.util.formatting import (
    day_end_ms,
    day_start_ms,
    format_duration,
    format_duration_hours,
    local_day,
    ms_to_hours,
    now_ms,
    to_datetime,
)
