"""
Qualification value normalizer.

Deterministic post-processing of free-form BANT answers into canonical
values. Every function is idempotent: passing an already-canonical value
returns it unchanged.
"""

import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

# ── Canonical vocabularies ──────────────────────────────────────

AUTHORITY_TYPES = ["sole_owner", "partner", "family", "advisor", "committee", "shared"]
NEED_TYPES = ["immediate", "residence", "investment", "resale", "other"]
TIMELINE_BUCKETS = ["immediate", "within_1_month", "1_3_months", "3_6_months", "6_12_months", "over_1_year"]

# ── Numbers ─────────────────────────────────────────────────────

_UNITS = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    "thirteen": 13, "fourteen": 14, "fifteen": 15, "sixteen": 16,
    "seventeen": 17, "eighteen": 18, "nineteen": 19,
}
_TENS = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}
_NUMBER_WORD = re.compile(
    r"\b(?:(?:%s|%s|hundred)(?:[\s-]+(?:and[\s-]+)?)?)+\b"
    % ("|".join(_TENS), "|".join(_UNITS)),
    re.IGNORECASE,
)

MULTIPLIERS = {
    "k": 1_000, "thousand": 1_000,
    "m": 1_000_000, "mn": 1_000_000, "mil": 1_000_000, "million": 1_000_000,
    "b": 1_000_000_000, "bn": 1_000_000_000, "billion": 1_000_000_000,
    "lakh": 100_000, "lakhs": 100_000, "lac": 100_000, "lacs": 100_000,
    "crore": 10_000_000, "crores": 10_000_000, "cr": 10_000_000,
}
_UNIT_ALT = "thousand|million|billion|crores|crore|lakhs|lakh|lacs|lac|mil|mn|bn|cr|k|m|b"

_AMOUNT = re.compile(rf"(\d+(?:\.\d+)?)\s*({_UNIT_ALT})?\b", re.IGNORECASE)
_RANGE = re.compile(
    rf"(\d+(?:\.\d+)?)\s*({_UNIT_ALT})?\s*(?:-|–|to|and)\s*(\d+(?:\.\d+)?)\s*({_UNIT_ALT})?\b",
    re.IGNORECASE,
)

# Bare figures below this are read as millions ("budget is 35")
BARE_MILLIONS_CEILING = 1_000


def _word_run_value(run: str) -> Optional[int]:
    total = 0
    current = 0
    seen = False
    for token in re.split(r"[\s-]+", run.lower()):
        if token in ("", "and"):
            continue
        if token in _UNITS:
            current += _UNITS[token]
        elif token in _TENS:
            current += _TENS[token]
        elif token == "hundred":
            current = (current or 1) * 100
        else:
            return None
        seen = True
    total += current
    return total if seen else None


def words_to_digits(text: str) -> str:
    """Replace spelled-out numbers ("thirty five") with digits."""
    text = re.sub(r"\ba\s+(thousand|million|billion|hundred)\b", r"1 \1", text, flags=re.IGNORECASE)

    def _sub(match: re.Match) -> str:
        raw = match.group(0)
        value = _word_run_value(raw)
        if value is None:
            return raw
        trailing = " " if raw[-1:].isspace() or raw.endswith("-") else ""
        return f"{value}{trailing}"

    return _NUMBER_WORD.sub(_sub, text)


def _strip_grouping(text: str) -> str:
    return re.sub(r"(?<=\d),(?=\d{3}\b)", "", text)


def _scaled(number: str, unit: Optional[str]) -> int:
    value = float(number)
    if unit:
        value *= MULTIPLIERS[unit.lower()]
    elif value < BARE_MILLIONS_CEILING:
        value *= 1_000_000
    return int(round(value))


# ── Budget ──────────────────────────────────────────────────────

def normalize_budget(value: Any) -> Optional[int]:
    """
    Parse a budget answer into one canonical integer amount.

    "35M", "35 million", "$35,000,000" and "thirty five million" all give
    35000000. Ranges take their lower bound; a unit given only on the
    upper end applies to both ("30-50M").

    Args:
        value: Raw answer text, or an already-canonical number

    Returns:
        Canonical amount, or None if no amount was found
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None

    text = _strip_grouping(words_to_digits(str(value).strip()))
    if not text:
        return None

    if re.fullmatch(r"\d+", text):
        amount = int(text)
        return amount * 1_000_000 if amount < BARE_MILLIONS_CEILING else amount

    range_match = _RANGE.search(text)
    if range_match:
        low, low_unit, _high, high_unit = range_match.groups()
        return _scaled(low, low_unit or high_unit)

    amounts: List[Tuple[str, Optional[str]]] = _AMOUNT.findall(text)
    if not amounts:
        return None

    for number, unit in amounts:
        if unit:
            return _scaled(number, unit)

    return _scaled(amounts[0][0], None)


def budget_band(amount: Optional[int]) -> Optional[str]:
    """Coarse band: high >= 30M, medium >= 10M, low otherwise."""
    if amount is None:
        return None
    if amount >= 30_000_000:
        return "high"
    if amount >= 10_000_000:
        return "medium"
    return "low"


# ── Authority ───────────────────────────────────────────────────

_AUTHORITY_PARTIES: List[Tuple[str, re.Pattern]] = [
    ("committee", re.compile(r"\b(board|committee|company|corporate|directors?|shareholders?|management)\b", re.I)),
    ("advisor", re.compile(r"\b(advis[oe]rs?|lawyer|attorney|accountant|consultant|broker|financial planner)\b", re.I)),
    ("family", re.compile(r"\b(family|parents?|mother|father|mom|dad|siblings?|brother|sister|kids|children|son|daughter)\b", re.I)),
    ("partner", re.compile(r"\b(spouse|wife|husband|partner|fianc[eé]e?|both of us|together|we|us)\b", re.I)),
]
_AUTHORITY_NEGATIVE = re.compile(r"^\s*(no|nope|nah|not (just|only) me|someone else)\b", re.I)
_AUTHORITY_SOLE = re.compile(
    r"(^\s*(yes|yep|yeah|yup|correct|absolutely|definitely|of course)\b"
    r"|\b(sole|solely|just me|only me|myself|alone|i decide|my decision|i make|i'm the|i am the|i am|i'm)\b)",
    re.I,
)


def normalize_authority(value: Any) -> Optional[str]:
    """Map a decision-authority answer to an AUTHORITY_TYPES code."""
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in AUTHORITY_TYPES:
        return text.lower()
    if not text:
        return None

    for code, pattern in _AUTHORITY_PARTIES:
        if pattern.search(text):
            return code
    if _AUTHORITY_NEGATIVE.search(text):
        return "shared"
    if _AUTHORITY_SOLE.search(text):
        return "sole_owner"
    return None


# ── Need ────────────────────────────────────────────────────────

_NEED_RULES: List[Tuple[str, re.Pattern]] = [
    ("resale", re.compile(r"\b(flip|flipping|resell|resale|sell it (later|again))\b", re.I)),
    ("investment", re.compile(r"\b(invest|investment|rental|rent (it )?out|income|roi|business|commercial|both)\b", re.I)),
    ("immediate", re.compile(r"\b(urgent|urgently|immediately|asap|relocat\w*|right away)\b", re.I)),
    ("residence", re.compile(r"\b(live|living|residence|residential|home|house|personal use|move in|family home|stay)\b", re.I)),
]


def normalize_need(value: Any) -> Optional[str]:
    """Map a purpose answer to a NEED_TYPES code; unmatched text is "other"."""
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in NEED_TYPES:
        return text.lower()
    if not text:
        return None

    for code, pattern in _NEED_RULES:
        if pattern.search(text):
            return code
    return "other"


# ── Timeline ────────────────────────────────────────────────────

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_SPAN_DAYS = {"day": 1, "week": 7, "month": 30, "year": 365}

_SPAN = re.compile(r"(\d+)(?:\s*(?:-|to)\s*(\d+))?\s*(day|week|month|year)s?\b", re.I)
_QUARTER = re.compile(r"\bq([1-4])(?:\s*(\d{4}))?\b", re.I)
_MONTH_NAME = re.compile(
    r"\b(?:by|in|around|before|this|next|until|from|early|late|mid)?\s*"
    r"(january|february|march|april|may|june|july|august|september|october|november|december"
    r"|jan|feb|mar|apr|jun|jul|aug|sept|sep|oct|nov|dec)\b(?:\s+(\d{4}))?",
    re.I,
)

_TIMELINE_RULES: List[Tuple[str, re.Pattern]] = [
    # Negated urgency before the urgency words it contains
    ("over_1_year", re.compile(r"\b(not (right )?now|not yet|not (any ?time )?soon|not immediately|not this (week|month|year)|(don't|do not) need (it|to buy)? ?(right )?now)\b", re.I)),
    ("over_1_year", re.compile(r"\b(not (urgent|in a rush)|no rush|no hurry|flexible|not sure|just (looking|browsing)|next year|over a year|more than a year)\b", re.I)),
    ("immediate", re.compile(r"\b(asap|immediately|right away|right now|urgent|urgently|now|today|tomorrow|this week|as soon as)\b", re.I)),
    ("within_1_month", re.compile(r"\b(this month|within (a|one) month|in a month|(a )?few weeks|couple of weeks|end of (the )?month)\b", re.I)),
    ("1_3_months", re.compile(r"\b(next month|few months|couple of months|soon|shortly)\b", re.I)),
    ("3_6_months", re.compile(r"\b(next quarter|half a year|this quarter|mid[- ]year)\b", re.I)),
    ("6_12_months", re.compile(r"\b(this year|end of (the )?year|within (a|one) year|later this year|year end)\b", re.I)),
    ("over_1_year", re.compile(r"\b(later|someday|eventually)\b", re.I)),
]


def _bucket_for_days(days: int) -> str:
    if days <= 7:
        return "immediate"
    if days <= 31:
        return "within_1_month"
    if days <= 92:
        return "1_3_months"
    if days <= 183:
        return "3_6_months"
    if days <= 366:
        return "6_12_months"
    return "over_1_year"


def _days_until(target: date, today: date) -> int:
    return max(0, (target - today).days)


def _next_occurrence(month: int, year: Optional[int], today: date) -> date:
    if year:
        return date(year, month, 1)
    candidate = date(today.year, month, 1)
    if month < today.month:
        candidate = date(today.year + 1, month, 1)
    return candidate


def normalize_timeline(value: Any, today: Optional[date] = None) -> Optional[str]:
    """
    Map a timing answer to a TIMELINE_BUCKETS code.

    Handles explicit spans ("in 6 weeks", "2-3 months"), quarters
    ("Q2 2026"), month names ("by March") and relative phrases ("ASAP",
    "next month", "next year").

    Args:
        value: Raw answer text or a bucket code
        today: Reference date for calendar phrases (defaults to today)

    Returns:
        Bucket code, or None if no timing was recognized
    """
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in TIMELINE_BUCKETS:
        return text.lower()
    if not text:
        return None

    today = today or date.today()
    text = words_to_digits(text)

    span = _SPAN.search(text)
    if span:
        low, high, unit = span.groups()
        count = int(high or low)
        return _bucket_for_days(count * _SPAN_DAYS[unit.lower()])

    quarter = _QUARTER.search(text)
    if quarter:
        q, year = int(quarter.group(1)), quarter.group(2)
        start_month = (q - 1) * 3 + 1
        if year:
            target = date(int(year), start_month, 1)
        else:
            target = date(today.year, start_month, 1)
            if (today.month - 1) // 3 + 1 > q:
                target = date(today.year + 1, start_month, 1)
        return _bucket_for_days(_days_until(target, today))

    for code, pattern in _TIMELINE_RULES:
        if pattern.search(text):
            return code

    month = _MONTH_NAME.search(text)
    if month:
        name, year = month.group(1).lower()[:3], month.group(2)
        target = _next_occurrence(_MONTHS[name], int(year) if year else None, today)
        if target.year == today.year and target.month == today.month:
            return "within_1_month"
        return _bucket_for_days(_days_until(target, today))

    return None


# ── Contact ─────────────────────────────────────────────────────

_PHONE_CHARS = re.compile(r"[\s().-]")


def normalize_phone(value: Any) -> Optional[str]:
    """Strip formatting; keep a leading '+'. 10-13 digits or None."""
    if value is None:
        return None
    raw = _PHONE_CHARS.sub("", str(value).strip())
    plus = raw.startswith("+")
    digits = raw.lstrip("+")
    if not digits.isdigit() or not 10 <= len(digits) <= 13:
        return None
    return f"+{digits}" if plus else digits


_EMAIL = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


def normalize_email(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text if _EMAIL.match(text) else None


def normalize_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    if not text or any(ch.isdigit() for ch in text) or len(text) > 100:
        return None
    return text.title() if text.islower() or text.isupper() else text


NORMALIZERS = {
    "budget": normalize_budget,
    "authority": normalize_authority,
    "need": normalize_need,
    "timeline": normalize_timeline,
}


def normalize_slot(slot: str, value: Any, today: Optional[date] = None) -> Any:
    """Dispatch to the slot's normalizer."""
    if slot == "timeline":
        return normalize_timeline(value, today=today)
    return NORMALIZERS[slot](value)


def canonical_snapshot(values: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a dict of slot -> raw value, dropping unparseable ones."""
    result = {}
    for slot, raw in values.items():
        if slot in NORMALIZERS:
            canonical = normalize_slot(slot, raw)
            if canonical is not None:
                result[slot] = canonical
    return result
