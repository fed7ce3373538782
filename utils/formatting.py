# utils/formatting.py

import re
import unicodedata
from datetime import date, datetime
from typing import Optional, Union

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Formats tried, in order, for dates that are neither ISO nor D/M/YYYY
_FALLBACK_DATE_FORMATS = (
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%a %b %d %Y",
)


def slugify(value: str, separator: str = "_") -> str:
    """
    Turn a display string into a lowercase ASCII wire token.
    Example: "Hỗ Trợ Khách" -> "ho_tro_khach"
    """
    text = value.lower().replace("đ", "d")
    text = unicodedata.normalize("NFD", text)
    text = "".join(ch for ch in text if unicodedata.category(ch) != "Mn")
    text = _NON_ALNUM.sub(separator, text)
    return text.strip(separator)


def title_case_token(token: str) -> str:
    """ "ho_tro_khach" -> "Ho Tro Khach" """
    return " ".join(word[:1].upper() + word[1:] for word in token.split("_"))


def format_date_for_db(value: Union[str, date, datetime, None]) -> Optional[str]:
    """
    Normalize a date to the YYYY-MM-DD form the database expects.

    - already ISO (YYYY-MM-DD...) -> returned unchanged
    - D/M/YYYY or DD/MM/YYYY     -> reordered to YYYY-MM-DD
    - anything else parseable    -> reduced to the date part
    - unparseable / empty        -> None
    """
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")

    text = value.strip()
    if not text:
        return None

    if _ISO_DATE.match(text):
        return text

    parts = text.split("/")
    if len(parts) == 3 and all(p.strip().isdigit() for p in parts):
        day, month, year = (p.strip() for p in parts)
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue

    return None
