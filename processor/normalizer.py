"""Patient-name normalization and Turkish-aware text folding.

The public pipeline only uses :func:`fold` and ``SURGERY_GLYPH`` (through the
classifier). The name helpers below are internal staff-side tools that work
on patient text; their output must never reach a public record or response.
"""
import re
import unicodedata
from typing import Optional

SURGERY_GLYPH = '🔪'

# Letter boundary: not preceded / followed by a letter (digits do not count).
_NO_LETTER_BEFORE = r'(?<![^\W\d_])'
_NO_LETTER_AFTER = r'(?![^\W\d_])'

_FOLD_TABLE = str.maketrans({
    'ı': 'i',
    'ş': 's',
    'ç': 'c',
    'ö': 'o',
    'ü': 'u',
    'ğ': 'g',
    'â': 'a',
    'î': 'i',
    'û': 'u',
    '\u0307': None,  # combining dot above, left over from a decomposed capital I
})

PHONE_RE = re.compile(
    _NO_LETTER_BEFORE + r'(?:tel|telefon)' + _NO_LETTER_AFTER + r'\s*[:.]?\s*\d[\d\s]*',
    re.IGNORECASE,
)
AGE_RE = re.compile(
    _NO_LETTER_BEFORE + r'(?:yas|yaş)' + _NO_LETTER_AFTER + r'\s*[:.]?\s*\d+',
    re.IGNORECASE,
)
NOISE_RE = re.compile(
    _NO_LETTER_BEFORE
    + r'(?:iptal|ertelendi|ameliyat|kontrol|muayene|k\d+|\d+(?:[.,]\d+)?m)'
    + _NO_LETTER_AFTER
)
# Trailing procedure/annotation metadata starts at any of these.
CUT_RE = re.compile(
    _NO_LETTER_BEFORE
    + r'(?:yabancı|yabanci|ortak|rino|kosta|revizyon|sekonder|septorin|tiplasti'
    + r'|kbb|implant|iy' + _NO_LETTER_AFTER + r').*$',
    re.DOTALL,
)
PAREN_RE = re.compile(r'\([^)]*\)')
CLOCK_RE = re.compile(r'\d{1,2}[:.]\d{2}')
PUNCT_RE = re.compile(r'[^\w\s]|_')

STOPWORDS = frozenset({
    'anestezi', 'pcr', 'yenidogan', 'yatis', 'plasti', 'plasty', 'op',
    'bilgi', 'formu', 'hazirlik', 'dosya', 'dr', 'protokol', 've', 'iy',
})

DISPLAY_NOISE = frozenset({'kosta', 'kostalı', 'rino', 'revizyon', 'ortak', 'vaka', 'iy'})

PROCEDURES = [
    (re.compile(r'septorino|septorinoplast'), 'Septorino'),
    (re.compile(r'rinoplast|rhinoplast|rino'), 'Rinoplasti'),
    (re.compile(r'otoplast'), 'Otoplasti'),
    (re.compile(r'septoplast'), 'Septoplasti'),
    (re.compile(r'blefar'), 'Blefaroplasti'),
    (re.compile(r'tipplast|tip plast'), 'Tipplasti'),
    (re.compile(r'mentoplast|genioplast'), 'Mentoplasti'),
    (re.compile(r'implant'), 'İmplant'),
    (re.compile(r'fess|endoskop'), 'FESS'),
    (re.compile(r'dudak'), 'Dudak'),
    (re.compile(r'kulak|kulag'), 'Kulak'),
]


def turkish_lower(text: str) -> str:
    """Lower-case with Turkish dotted/dotless I rules."""
    return text.replace('I', 'ı').replace('İ', 'i').lower()


def turkish_upper(text: str) -> str:
    return text.replace('i', 'İ').replace('ı', 'I').upper()


def fold(text: Optional[str]) -> str:
    """
    Fold text for case- and diacritic-insensitive comparison.

    Turkish letters map to their base Latin forms (ş->s, ı->i, İ->i...), so
    "TOPLANTI", "Toplantı" and "toplanti" all fold to "toplanti".

    Args:
        text: Any string, None is treated as empty

    Returns:
        Folded string
    """
    if not text:
        return ''
    text = unicodedata.normalize('NFC', text)
    return turkish_lower(text).translate(_FOLD_TABLE)


def _capitalize(token: str) -> str:
    return turkish_upper(token[0]) + token[1:]


def normalize_name(raw_title: Optional[str]) -> str:
    """
    Reduce a raw event title to a canonical patient-name fragment.

    Args:
        raw_title: Event title as entered in the calendar

    Returns:
        Title-cased, folded name tokens, e.g. "Ahmet Can"
    """
    text = unicodedata.normalize('NFC', raw_title or '')

    # Text before the glyph is a category marker, the name follows it.
    if SURGERY_GLYPH in text:
        text = text.rpartition(SURGERY_GLYPH)[2]

    text = turkish_lower(text)
    text = PHONE_RE.sub(' ', text)
    text = AGE_RE.sub(' ', text)
    text = NOISE_RE.sub(' ', text)
    text = CUT_RE.sub('', text)
    text = PAREN_RE.sub(' ', text)
    text = CLOCK_RE.sub(' ', text)
    text = fold(text)
    text = PUNCT_RE.sub(' ', text)

    tokens = [
        token for token in text.split()
        if len(token) > 1 and token not in STOPWORDS
    ]
    return ' '.join(_capitalize(token) for token in tokens)


def abbreviate_name(name: str) -> str:
    """First name plus the initial of the second token: "Ahmet C."."""
    tokens = name.split()
    if not tokens:
        return ''
    if len(tokens) == 1:
        return tokens[0]
    return f"{tokens[0]} {turkish_upper(tokens[1][0])}."


def clean_display_name(title: Optional[str]) -> str:
    """
    Clean a title for internal display while keeping original letters.

    Birth-year tags (🎂2002) and revision tags ([Rev1]) are preserved and
    re-attached at the end. A "|" procedure separator is kept as is.
    """
    text = unicodedata.normalize('NFC', title or '')

    extras = []
    for pattern in (r'\s*(🎂\S*)', r'\s*(\[Rev\d+\])'):
        match = re.search(pattern, text)
        if match:
            extras.append(match.group(1))
            text = text.replace(match.group(0), '', 1)

    text = text.replace(SURGERY_GLYPH, ' ')
    text = CLOCK_RE.sub(' ', text)
    text = PAREN_RE.sub(' ', text)
    text = PHONE_RE.sub(' ', text)
    text = AGE_RE.sub(' ', text)
    words = [word for word in text.split() if turkish_lower(word) not in DISPLAY_NOISE]
    text = re.sub(r'^[,;.\-/\s]+', '', ' '.join(words))

    cleaned = ' '.join(
        turkish_upper(word[0]) + turkish_lower(word[1:])
        for word in text.split()
    )
    return ' '.join([cleaned] + extras) if extras else cleaned


def extract_procedure(title: Optional[str]) -> Optional[str]:
    """
    Extract the surgery procedure name from a title.

    Pipe notation ("Name | Rinoplasti") wins over the keyword scan.

    Returns:
        Canonical procedure name, or None when nothing matches
    """
    if not title:
        return None

    if '|' in title:
        part = title.split('|')[1].strip()
        if len(part) >= 3:
            return part

    folded = fold(title)
    for pattern, name in PROCEDURES:
        if pattern.search(folded):
            return name
    return None
