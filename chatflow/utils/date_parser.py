"""
Spanish date parsing and formatting.

Availability and booking nodes receive dates from flow config or from
whatever the user typed ("mañana", "viernes", "8 de noviembre",
"2025-11-08"). This module turns them into `date` objects and formats dates
back for messages ("viernes 8 de noviembre").
"""

import re
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

WEEKDAY_NAMES = [
    "lunes",
    "martes",
    "miércoles",
    "jueves",
    "viernes",
    "sábado",
    "domingo",
]

MONTH_NAMES = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]

SPANISH_WEEKDAYS = {
    "lunes": 0,
    "martes": 1,
    "miércoles": 2,
    "miercoles": 2,
    "jueves": 3,
    "viernes": 4,
    "sábado": 5,
    "sabado": 5,
    "domingo": 6,
    "lun": 0,
    "mar": 1,
    "mié": 2,
    "mie": 2,
    "jue": 3,
    "vie": 4,
    "sáb": 5,
    "sab": 5,
    "dom": 6,
}

SPANISH_MONTHS = {name: index + 1 for index, name in enumerate(MONTH_NAMES)}

RELATIVE_DATES = {
    "hoy": 0,
    "mañana": 1,
    "manana": 1,
    "pasado mañana": 2,
    "pasado manana": 2,
}

ISO_DATE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})(?:[T ].*)?$")
WRITTEN_DATE = re.compile(r"^(?:\w+\s+)?(\d{1,2})\s+de\s+(\w+)(?:\s+de\s+(\d{4}))?$")
DAY_MONTH_DATE = re.compile(r"^(\d{1,2})[-/](\d{1,2})(?:[-/](\d{4}))?$")


def today_in(timezone: str | ZoneInfo) -> date:
    tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
    return datetime.now(tz).date()


def parse_natural_date(date_str: str, reference_date: date) -> date:
    """
    Parse a Spanish date expression.

    Accepted formats:
    - ISO 8601: "2025-11-08" (a time part is ignored)
    - Relative: "hoy", "mañana", "pasado mañana"
    - Weekdays: "lunes" ... "domingo" and abbreviations; a weekday equal to
      today's means next week
    - Written: "8 de noviembre", "viernes 8 de noviembre", "15 de diciembre de 2025"
    - Day/month: "08/11", "8-11", "08/11/2025"

    Args:
        date_str: Expression to parse
        reference_date: Date that "hoy" refers to

    Returns:
        Parsed date

    Raises:
        ValueError: If the expression cannot be parsed
    """
    normalized = " ".join(date_str.strip().lower().split())

    if normalized in RELATIVE_DATES:
        return reference_date + timedelta(days=RELATIVE_DATES[normalized])

    if normalized in SPANISH_WEEKDAYS:
        target = SPANISH_WEEKDAYS[normalized]
        days_ahead = (target - reference_date.weekday()) % 7 or 7
        return reference_date + timedelta(days=days_ahead)

    iso_match = ISO_DATE.match(normalized)
    if iso_match:
        year, month, day = map(int, iso_match.groups())
        return date(year, month, day)

    written_match = WRITTEN_DATE.match(normalized)
    if written_match and written_match.group(2) in SPANISH_MONTHS:
        day = int(written_match.group(1))
        month = SPANISH_MONTHS[written_match.group(2)]
        year = int(written_match.group(3)) if written_match.group(3) else reference_date.year
        return date(year, month, day)

    day_month_match = DAY_MONTH_DATE.match(normalized)
    if day_month_match:
        day, month = int(day_month_match.group(1)), int(day_month_match.group(2))
        year = int(day_month_match.group(3)) if day_month_match.group(3) else reference_date.year
        return date(year, month, day)

    raise ValueError(
        f"No se pudo interpretar la fecha '{date_str}'. "
        f"Formatos aceptados: 'mañana', 'viernes', '2025-11-08', '8 de noviembre'"
    )


def format_date_spanish(value: date) -> str:
    """
    Format a date for messages.

    Example:
        >>> format_date_spanish(date(2025, 11, 8))
        'sábado 8 de noviembre'
    """
    return f"{WEEKDAY_NAMES[value.weekday()]} {value.day} de {MONTH_NAMES[value.month - 1]}"
