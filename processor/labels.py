"""Localized public labels for event categories."""
from typing import Dict, Iterable

from processor.models import Category

DEFAULT_LANGUAGE = 'tr'

CATEGORY_LABELS: Dict[str, Dict[Category, str]] = {
    'tr': {
        Category.SURGERY: 'Ameliyat',
        Category.CONTROL: 'Kontrol',
        Category.EXAM: 'Muayene',
        Category.ONLINE: 'Online Görüşme',
        Category.BUSY: 'Dolu',
        Category.AVAILABLE: 'Müsait',
        Category.CANCELLED: 'İptal',
        Category.ANESTHESIA: 'Anestezi',
    },
    'en': {
        Category.SURGERY: 'Surgery',
        Category.CONTROL: 'Control',
        Category.EXAM: 'Examination',
        Category.ONLINE: 'Online Consultation',
        Category.BUSY: 'Busy',
        Category.AVAILABLE: 'Available',
        Category.CANCELLED: 'Cancelled',
        Category.ANESTHESIA: 'Anesthesia',
    },
}


def resolve_language(language: str) -> str:
    """Map a requested language to a supported one, falling back to Turkish."""
    if language and language.lower() in CATEGORY_LABELS:
        return language.lower()
    return DEFAULT_LANGUAGE


def category_label(category: Category, language: str = DEFAULT_LANGUAGE) -> str:
    return CATEGORY_LABELS[resolve_language(language)][category]


def summary_title(categories: Iterable[Category], language: str = DEFAULT_LANGUAGE) -> str:
    """
    Build a merged-block title such as "3 Kontrol, 1 Muayene".

    Categories are counted and listed in order of first appearance.
    """
    counts: Dict[Category, int] = {}
    for category in categories:
        counts[category] = counts.get(category, 0) + 1
    return ', '.join(
        f"{count} {category_label(category, language)}"
        for category, count in counts.items()
    )
