"""
Text utilities for matching catalog names and import column headers.

Menu names arrive with accents, mixed case and stray whitespace; natural
keys and column aliases are compared on a normalized form.
"""

import re
import unicodedata
from typing import Optional


def strip_accents(text: str) -> str:
    """
    Remove accent marks, keeping the base characters.

    "Café Crème" -> "Cafe Creme"
    """
    # NFD decomposition separates base chars from accents
    normalized = unicodedata.normalize('NFD', text)
    return ''.join(
        c for c in normalized
        if unicodedata.category(c) != 'Mn'
    )


def normalize_name(name: Optional[str]) -> Optional[str]:
    """
    Normalize an entity name for natural-key comparison.

    - "  Pizzas  Clásicas " -> "PIZZAS CLASICAS"
    - "Jalapeño" -> "JALAPENO"

    Args:
        name: Raw name (may have accents, mixed case, repeated spaces)

    Returns:
        Uppercase ASCII string with single spaces, or None if empty
    """
    if not name:
        return None

    name = " ".join(str(name).split())

    if not name:
        return None

    return strip_accents(name).upper()


def normalize_column(column: Optional[str]) -> str:
    """
    Normalize a file header for alias matching.

    - "Base Price" -> "base_price"
    - "Catégorie-Nom" -> "categorie_nom"
    - "  Sort order (#) " -> "sort_order"
    """
    if not column:
        return ""

    text = strip_accents(str(column)).lower().strip()
    text = re.sub(r"[^a-z0-9]+", "_", text)
    return text.strip("_")


def clean_text(value: Optional[str], max_length: int = 255) -> Optional[str]:
    """
    Clean free text for storage (preserves accents).

    - Strips whitespace
    - Truncates to max length
    - Returns None for empty/whitespace-only strings
    """
    if value is None:
        return None

    value = str(value).strip()

    if not value:
        return None

    if len(value) > max_length:
        value = value[:max_length]

    return value
