"""
Spanish phrase tables for the scheduling assistant.

Month names, trigger phrases and day-part markers live here as data so
the parser and the dispatcher only contain matching logic. Patterns are
written against normalized text (lower-case, accents stripped), see
normalize_text().
"""

import re
import unicodedata

MONTH_NAMES = [
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
]

# Alternate spellings accepted on input only
MONTH_ALIASES = {
    "setiembre": 9,
}

# Start the booking flow
START_PATTERNS = [
    re.compile(r"agendar\s+(una\s+)?(cita|llamada)"),
    re.compile(r"reservar\s+(una\s+)?(cita|llamada)"),
]

FALLBACK_START_KEYWORDS = [
    "agendar",
    "agendar cita",
    "agendar una cita",
    "agendar llamada",
    "agendar una llamada",
    "reservar",
    "reservar cita",
    "reservar una cita",
    "reservar llamada",
    "reservar una llamada",
]

CANCEL_PATTERNS = [
    re.compile(r"cancelar"),
    re.compile(r"ya\s+no"),
]

AVAILABILITY_QUERY_PATTERNS = [
    re.compile(r"horarios?\s+disponibles?"),
    re.compile(r"disponibilidad\s+de\s+horarios?"),
    re.compile(r"que\s+horarios?\s+tienen"),
    re.compile(r"disponibilidad\s+para\s+otro\s+dia"),
    re.compile(r"hay\s+disponibilidad\s+(?:el|para\s+el)\s+dia"),
]

SHOW_MORE_PATTERNS = [
    re.compile(r"mostrar\s+mas\s+horarios?"),
    re.compile(r"mas\s+horarios?"),
]

ASAP_PATTERNS = [
    re.compile(r"lo\s+antes\s+posible"),
    re.compile(r"lo\s+mas\s+pronto\s+posible"),
    re.compile(r"lo\s+mas\s+pronto"),
    re.compile(r"cuanto\s+antes"),
]

DATE_CHANGE_PATTERNS = [
    re.compile(r"otra\s+fecha"),
    re.compile(r"cambiar\s+la?\s+fecha"),
    re.compile(r"preferiria\s+otra\s+fecha"),
    re.compile(r"otro\s+dia"),
]

EMPTY_NOTES_PATTERN = re.compile(r"^(no|ninguno|ninguna)[.!]?$")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Day-part markers for 12-hour disambiguation
AFTERNOON_MARKERS = re.compile(r"(?<![a-z])p\.?\s?m\b|tarde|noche")
MORNING_MARKERS = re.compile(r"(?<![a-z])a\.?\s?m\b|manana|madrugada|temprano")

NOON_PATTERN = re.compile(r"mediodia")
MIDNIGHT_PATTERN = re.compile(r"medianoche")

# Anything that looks like the user mentioned a clock time
TIME_INDICATOR_PATTERN = re.compile(
    r"(\d{1,2}\s*(?:am|a\.m|pm|p\.m|horas?|hrs?))"
    r"|(\d{1,2}[:h.](\d{2}))"
    r"|(a\s+las?\s+\d{1,2})"
    r"|(mediodia)"
    r"|(medianoche)"
)

# Applied to the raw message: zone names are case sensitive
TIMEZONE_PATTERN = re.compile(
    r"GMT[+-]\d{1,2}|UTC[+-]\d{1,2}|[A-Za-z]+/[A-Za-z_]+", re.IGNORECASE
)


def normalize_text(text: str) -> str:
    """Lower-case, trim and strip diacritics ("Mañana" -> "manana")."""
    decomposed = unicodedata.normalize("NFD", str(text or ""))
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return stripped.lower().strip()


def matches_any(patterns: list[re.Pattern], text: str) -> bool:
    """Check a message against a pattern list after normalization."""
    normalized = normalize_text(text)
    if not normalized:
        return False
    return any(pattern.search(normalized) for pattern in patterns)


def month_number(name: str) -> int:
    """Map a normalized month name to 1-12 (0 if unknown)."""
    if name in MONTH_ALIASES:
        return MONTH_ALIASES[name]
    try:
        return MONTH_NAMES.index(name) + 1
    except ValueError:
        return 0
