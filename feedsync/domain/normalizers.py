"""Cell Normalizers - Pure Text-to-Value Functions.

Every source extract arrives as text cells. The functions here are the
shared vocabulary the row transformer composes: header normalization,
sentinel stripping, identifier and CUPS cleanup, multi-format date parsing
and the small field cleaners (phone, status, duration).

Security Impact:
    - NUL characters are stripped before any value reaches storage
    - Textual NULL/NAN/UNDEFINED sentinels never become stored values

Architecture:
    - Pure functions, no I/O, no state
    - Date parsers are registered by name so sources can declare their
      priority order in configuration
"""

import re
import unicodedata
from datetime import date, timedelta
from typing import Callable, Dict, Optional, Sequence

NULL_SENTINELS = frozenset({"NULL", "NAN", "UNDEFINED"})

DEFAULT_DATE_ORDER = ("ymd_slash", "dmy", "mdy_short", "excel_serial", "iso")

EXCEL_EPOCH = date(1899, 12, 30)

_WHITESPACE = re.compile(r"\s+")
_NBSP_ENTITY = re.compile(r"&nbsp;", re.IGNORECASE)
_TRAILING_FLOAT = re.compile(r"\.0$")
_LEADING_INT = re.compile(r"^\s*-?\d+")
_DIGITS = re.compile(r"\D")
_FIRST_NUMBER = re.compile(r"-?(\d+)")
_EDGE_PUNCT = re.compile(r'^["\',]+|["\',]+$')

_YMD_SLASH = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})")
_DMY = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})")
_MDY_SHORT = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})(?:\s.*)?$")
_MDY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:\s.*)?$")
_ISO = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_SERIAL = re.compile(r"^\d+(\.\d+)?$")


def strip_accents(text: str) -> str:
    """Remove combining marks after NFD decomposition (Á -> A, Ñ -> N)."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_header(text: Optional[str], compact: bool = True) -> str:
    """Normalize a header cell for matching.

    Parameters:
        text: Raw header text
        compact: Remove all whitespace when True, otherwise only trim
            (the "spaced" style keeps "ID CITA" distinct from "IDCITA")

    Returns:
        str: Accent-free, uppercase header token
    """
    if not text:
        return ""
    value = _NBSP_ENTITY.sub("", strip_accents(text)).replace("\xa0", " ")
    if compact:
        value = _WHITESPACE.sub("", value)
    return value.strip().upper()


def sanitize(value: Optional[str], strip_quotes: bool = False) -> str:
    """Strip NULs (and quotes when asked), trim, and blank out textual sentinels."""
    if not value:
        return ""
    clean = value.replace("\x00", "")
    if strip_quotes:
        clean = clean.replace('"', "")
    clean = clean.strip()
    if clean.upper() in NULL_SENTINELS:
        return ""
    return clean


def clean_id(value: Optional[str]) -> str:
    """Trim an identifier and drop the ".0" suffix spreadsheets add to numbers."""
    if not value:
        return ""
    return _TRAILING_FLOAT.sub("", value.strip())


def normalize_cups(value: Optional[str]) -> Optional[str]:
    """Normalize a CUPS procedure code.

    The clinical system right-pads codes with zeros, so only the first six
    characters are meaningful; five-character codes lost their leading zero.

    Examples:
        5340010000 -> 534001, 6400000000 -> 640000, 70101 -> 070101, abc -> None
    """
    cups = clean_id(value)
    if not cups:
        return None
    if len(cups) > 6:
        cups = cups[:6]
    if len(cups) == 5:
        cups = "0" + cups
    return cups if len(cups) == 6 else None


def cups_head(value: Optional[str]) -> Optional[str]:
    """First six characters of a "CODE - DESCRIPTION" cell, with ".0" removed."""
    if not value:
        return None
    head = _TRAILING_FLOAT.sub("", value.strip()[:6].strip())
    return head or None


def _safe_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _parse_ymd_slash(text: str) -> Optional[str]:
    match = _YMD_SLASH.match(text)
    if not match:
        return None
    return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def _parse_dmy(text: str) -> Optional[str]:
    match = _DMY.match(text)
    if not match:
        return None
    return _safe_date(int(match.group(3)), int(match.group(2)), int(match.group(1)))


def _parse_mdy_short(text: str) -> Optional[str]:
    match = _MDY_SHORT.match(text)
    if not match:
        return None
    yy = int(match.group(3))
    year = 2000 + yy if yy <= 30 else 1900 + yy
    return _safe_date(year, int(match.group(1)), int(match.group(2)))


def _parse_mdy(text: str) -> Optional[str]:
    match = _MDY.match(text)
    if not match:
        return None
    return _safe_date(int(match.group(3)), int(match.group(1)), int(match.group(2)))


def _parse_excel_serial(text: str) -> Optional[str]:
    if not _SERIAL.match(text):
        return None
    serial = float(text)
    if not 1000 < serial < 100000:
        return None
    return (EXCEL_EPOCH + timedelta(days=int(serial))).isoformat()


def _parse_iso(text: str) -> Optional[str]:
    match = _ISO.match(text)
    if not match:
        return None
    return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))


DATE_PARSERS: Dict[str, Callable[[str], Optional[str]]] = {
    "ymd_slash": _parse_ymd_slash,
    "dmy": _parse_dmy,
    "mdy_short": _parse_mdy_short,
    "mdy": _parse_mdy,
    "excel_serial": _parse_excel_serial,
    "iso": _parse_iso,
}


def parse_date(value: Optional[str], order: Sequence[str] = DEFAULT_DATE_ORDER) -> Optional[str]:
    """Parse a date cell into ISO YYYY-MM-DD.

    Formats are tried in the given order; a format whose pattern matches but
    yields an impossible month or day falls through to the next one.

    Parameters:
        value: Raw cell text
        order: Names from DATE_PARSERS in priority order

    Returns:
        Optional[str]: ISO date, or None when no format accepts the value
    """
    if not value or not value.strip():
        return None
    text = value.strip()
    for name in order:
        parsed = DATE_PARSERS[name](text)
        if parsed:
            return parsed
    return None


def leading_int(value: Optional[str]) -> Optional[int]:
    """Leading integer of a cell ("12" -> 12, "3.0" -> 3, "x" -> None)."""
    if not value:
        return None
    match = _LEADING_INT.match(value)
    return int(match.group(0)) if match else None


def digits_int(value: Optional[str]) -> Optional[int]:
    """Integer made of the digits in a cell ("45 AÑOS" -> 45)."""
    if not value:
        return None
    digits = _DIGITS.sub("", value)
    return int(digits) if digits else None


def clean_phone(value: Optional[str]) -> str:
    """Keep a phone only when it is a 10-digit mobile number starting with 3."""
    digits = _DIGITS.sub("", value or "")
    return digits if digits.startswith("3") and len(digits) == 10 else ""


def normalize_status(value: Optional[str]) -> str:
    """Uppercase a service status; anything containing ACTIVO collapses to ACTIVO."""
    upper = (value or "").strip().upper()
    return "ACTIVO" if "ACTIVO" in upper else upper


def status_prefix(value: Optional[str]) -> str:
    """Text before the first " -" ("ASISTIDA - OK" -> "ASISTIDA")."""
    if not value:
        return ""
    return value.split(" -")[0].strip()


def clean_duration(value: Optional[str]) -> Optional[str]:
    """Rewrite "18 Minutos" as "18 minutes"."""
    if not value:
        return None
    match = _FIRST_NUMBER.search(value)
    return f"{match.group(1)} minutes" if match else None


def trim_punct(value: Optional[str]) -> str:
    """Strip leading or trailing quotes and commas left by loose CSV exports."""
    if not value:
        return ""
    return _EDGE_PUNCT.sub("", value.strip()).strip()


def calculate_age(birth_iso: Optional[str], reference_iso: Optional[str]) -> Optional[int]:
    """Whole years between two ISO dates; negative ages clamp to 0."""
    if not birth_iso or not reference_iso:
        return None
    try:
        birth = date.fromisoformat(birth_iso)
        reference = date.fromisoformat(reference_iso)
    except ValueError:
        return None
    age = reference.year - birth.year
    if (reference.month, reference.day) < (birth.month, birth.day):
        age -= 1
    return max(age, 0)


def format_duration(seconds: float) -> str:
    """Render elapsed seconds as "Xm Ys"."""
    total = int(round(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes}m {secs}s"
