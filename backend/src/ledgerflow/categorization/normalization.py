"""Text normalization shared by rules, labeled examples and reconciliation.

normalize_description() is the single normalization used for
LabeledExample.normalized_description, Transaction.normalized_description and
rules learned from feedback, so that a corrected description and a later
identical one always normalize to the same string.
"""

import re
from typing import List, Optional

MAX_DESCRIPTION_WORDS = 6

# Bank-statement noise stripped before comparison
_UPI_HANDLE = re.compile(r"\b[\w.\-]+@[\w.\-]+")
_REFERENCE = re.compile(
    r"\b(?:ref(?:\s*no)?|reference|txn\s*id|txnid|transaction\s*id|utr|chq(?:\s*no)?)\b[\s:#.\-]*[\w-]*\d[\w-]*",
    re.IGNORECASE,
)
_DATE = re.compile(r"\b\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}\b")
_TIME = re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?\s*(?:am|pm)?\b", re.IGNORECASE)
_AMOUNT = re.compile(r"(?:₹|\$|€|£|\brs\.?|\binr|\busd|\beur)\s*[\d,]+(?:\.\d+)?", re.IGNORECASE)
_ACCOUNT = re.compile(r"\b(?:a/c|acc|account)\b[\s:#.]*[x*\d][\w*-]*", re.IGNORECASE)
_NON_WORD = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")

# Vendor comparison (reconciliation)
_VENDOR_SEPARATORS = re.compile(r"[/\-_@.]")
_VENDOR_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def collapse_whitespace(text: Optional[str]) -> str:
    """Trim and collapse internal whitespace runs to a single space."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def normalize_description(description: Optional[str]) -> str:
    """Normalize a transaction description for matching and learning.

    Lowercases, strips statement noise (UPI handles, reference numbers,
    dates, times, currency amounts, masked account numbers), replaces
    punctuation with spaces, drops one-character words and keeps the first
    six words (usually merchant + purpose).

    Args:
        description: Raw description (may be None)

    Returns:
        str: Normalized description ("" for empty input)

    Example:
        >>> normalize_description("UPI/zomato@hdfc  ZOMATO ORDER Ref 88213 12/03/2024")
        'upi zomato order'
    """
    text = collapse_whitespace(description).lower()
    if not text:
        return ""

    for pattern in (_UPI_HANDLE, _REFERENCE, _DATE, _TIME, _AMOUNT, _ACCOUNT):
        text = pattern.sub(" ", text)

    text = _NON_WORD.sub(" ", text)
    words = [word for word in text.split() if len(word) >= 2]
    return " ".join(words[:MAX_DESCRIPTION_WORDS])


def normalize_pattern(pattern: Optional[str], pattern_type: Optional[str] = None) -> str:
    """Normalize a rule pattern as stored.

    Keyword patterns are trimmed and lowercased; regex patterns are only
    trimmed since case changes escapes such as \\D or \\W.
    """
    pattern = (pattern or "").strip()
    if pattern_type == "regex":
        return pattern
    return pattern.lower()


def normalize_vendor(text: Optional[str]) -> str:
    """Normalize a vendor name or description for fuzzy vendor comparison.

    Lowercase, separators (/-_@.) become spaces, anything else that is not
    alphanumeric is removed, whitespace collapsed.
    """
    if not text:
        return ""
    text = _VENDOR_SEPARATORS.sub(" ", text.lower())
    text = _VENDOR_NON_ALNUM.sub("", text)
    return collapse_whitespace(text)


def vendor_tokens(text: Optional[str]) -> List[str]:
    """Significant vendor tokens (longer than two characters)."""
    return [token for token in normalize_vendor(text).split() if len(token) > 2]
