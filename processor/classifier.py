"""Rule-table classifier mapping calendar events to categories.

Rules are evaluated top to bottom and the first match wins. The order is
part of the contract: insert new rules where they belong in ``RULES`` and
pin them with a precedence test.

=== ================================================ ==========
 #  rule                                             category
=== ================================================ ==========
 1  "xxx" anywhere                                   Busy
 2  starts with "anest"                              Anesthesia
 3  red color tag                                    Cancelled
 4  cancellation prefix or info glyph                Cancelled
 5  busy / out-of-office keyword                     Busy
 6  online meeting keyword                           Online
 7  surgery glyph or keyword                         Surgery
 8  clock prefix with "muayene"                      Exam
 9  clock prefix                                     Surgery
10  long event without control/exam keywords        Surgery
11  checkup marker                                   Control
12  examination marker                               Exam
--  no match                                         Busy
=== ================================================ ==========
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Union

from dateutil import parser as date_parser

from processor.models import Category
from processor.normalizer import SURGERY_GLYPH, fold

SURGERY_MIN_MINUTES = 60

INFO_GLYPH = 'ℹ'
RED_COLOR_TAGS = frozenset({'11', '#dc2127'})
CANCELLED_PREFIXES = ('ipt', 'ert', 'iptal', 'ertelendi', 'bilgi', INFO_GLYPH)
BUSY_KEYWORDS = (
    'izin', 'kongre', 'toplanti', 'off', 'yokum', 'cumartesi', 'pazar',
    'hasta gorebiliriz', 'hasta gorme', 'hasta gorelim', 'cikis', 'yok',
    'gitmem', 'vizite',
)
ONLINE_KEYWORDS = ('online', 'meet', 'gorusme', 'video', 'opd')
SURGERY_KEYWORDS = ('ameliyat', 'surgery')
CONTROL_KEYWORDS = ('kontrol',)
EXAM_KEYWORDS = ('muayene', 'exam')

CLOCK_PREFIX_RE = re.compile(r'^\d{1,2}[:.]\d{2}')
# "k", "k1", "K2 Ayse" but not "Kemal"
CONTROL_PREFIX_RE = re.compile(r'^k\d*(?![^\W\d_])')
# months since surgery: "1m ", "1.5m "
RELATIVE_PREFIX_RE = re.compile(r'^\d+(?:\.\d+)?m\s')
EXAM_PREFIX_RE = re.compile(r'^(?:m|op)\s')

DateLike = Union[datetime, str, None]


@dataclass(frozen=True)
class Subject:
    """Precomputed view of one event that rule predicates inspect."""
    title: str
    folded: str
    color_tag: str
    duration_minutes: Optional[float]
    surgery_min_minutes: int


@dataclass(frozen=True)
class Rule:
    name: str
    category: Category
    predicate: Callable[[Subject], bool]


def _contains_any(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


def _is_long_unmarked(subject: Subject) -> bool:
    if subject.duration_minutes is None:
        return False
    if subject.duration_minutes < subject.surgery_min_minutes:
        return False
    return not _contains_any(subject.folded, CONTROL_KEYWORDS + ('muayene',))


RULES: List[Rule] = [
    Rule('busy-override', Category.BUSY,
         lambda s: 'xxx' in s.folded),
    Rule('anesthesia-prefix', Category.ANESTHESIA,
         lambda s: s.folded.startswith('anest')),
    Rule('red-color', Category.CANCELLED,
         lambda s: s.color_tag in RED_COLOR_TAGS),
    Rule('cancelled-prefix', Category.CANCELLED,
         lambda s: s.folded.startswith(CANCELLED_PREFIXES) or INFO_GLYPH in s.title),
    Rule('busy-keyword', Category.BUSY,
         lambda s: _contains_any(s.folded, BUSY_KEYWORDS)),
    Rule('online-keyword', Category.ONLINE,
         lambda s: _contains_any(s.folded, ONLINE_KEYWORDS)),
    Rule('surgery-marker', Category.SURGERY,
         lambda s: SURGERY_GLYPH in s.title or _contains_any(s.folded, SURGERY_KEYWORDS)),
    Rule('clock-prefixed-exam', Category.EXAM,
         lambda s: bool(CLOCK_PREFIX_RE.match(s.title)) and 'muayene' in s.folded),
    Rule('clock-prefix', Category.SURGERY,
         lambda s: bool(CLOCK_PREFIX_RE.match(s.title))),
    Rule('long-duration', Category.SURGERY, _is_long_unmarked),
    Rule('checkup-marker', Category.CONTROL,
         lambda s: bool(CONTROL_PREFIX_RE.match(s.folded))
         or bool(RELATIVE_PREFIX_RE.match(s.folded))
         or _contains_any(s.folded, CONTROL_KEYWORDS)),
    Rule('exam-marker', Category.EXAM,
         lambda s: bool(EXAM_PREFIX_RE.match(s.folded))
         or _contains_any(s.folded, EXAM_KEYWORDS)),
]

DEFAULT_RULE = Rule('default', Category.BUSY, lambda s: True)


def _to_datetime(value: DateLike) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return date_parser.isoparse(str(value))
    except (ValueError, OverflowError):
        return None


def duration_minutes(start: DateLike, end: DateLike) -> Optional[float]:
    """
    Compute an event duration in minutes.

    Returns:
        Minutes between start and end, or None if either is missing or
        unparseable
    """
    start_dt = _to_datetime(start)
    end_dt = _to_datetime(end)
    if start_dt is None or end_dt is None:
        return None
    try:
        return (end_dt - start_dt).total_seconds() / 60
    except TypeError:
        # naive vs aware
        return None


def match_rule(
    title: Optional[str],
    color_tag: Optional[str] = None,
    start: DateLike = None,
    end: DateLike = None,
    surgery_min_minutes: int = SURGERY_MIN_MINUTES,
) -> Rule:
    """
    Find the first rule in ``RULES`` matching an event.

    Args:
        title: Raw event title
        color_tag: Upstream color id ("11") or hex color ("#dc2127")
        start: Event start, datetime or ISO string
        end: Event end, datetime or ISO string
        surgery_min_minutes: Duration from which unmarked events count as surgery

    Returns:
        Matching Rule, ``DEFAULT_RULE`` when none matches
    """
    raw_title = (title if isinstance(title, str) else str(title or '')).strip()
    subject = Subject(
        title=raw_title,
        folded=fold(raw_title),
        color_tag=str(color_tag or '').strip().lower(),
        duration_minutes=duration_minutes(start, end),
        surgery_min_minutes=surgery_min_minutes,
    )
    for rule in RULES:
        if rule.predicate(subject):
            return rule
    return DEFAULT_RULE


def classify(
    title: Optional[str],
    color_tag: Optional[str] = None,
    start: DateLike = None,
    end: DateLike = None,
    surgery_min_minutes: int = SURGERY_MIN_MINUTES,
) -> Category:
    """Classify an event; total, never raises for any title."""
    return match_rule(title, color_tag, start, end, surgery_min_minutes).category


def control_label(surgery_date: datetime, event_date: datetime) -> str:
    """
    Label a follow-up visit by the time elapsed since surgery.

    Internal staff-side helper; the public pipeline does not use it.

    Returns:
        "Nd" under a week, "Nw" up to 25 days, "N.Nm" in half months
        beyond that, "?" if the visit precedes the surgery
    """
    days = (event_date - surgery_date).days
    if days < 0:
        return '?'
    if days < 7:
        return f"{days}d"
    if days <= 25:
        return f"{round(days / 7)}w"
    return f"{round(days / 15) / 2:g}m"
