"""Rule, category-keyword and global-pattern matching (the deterministic tiers).

Tier order: user rules, then category keywords (the taxonomy's coarse
vocabulary), then verified global patterns.

Pattern semantics:
- keyword: case-insensitive substring of the description
- regex: re.search with IGNORECASE on the raw description
- amount_range: abs(amount) within [amount_min, amount_max] (either bound optional)

match_field:
- description: text predicate on the description
- amount: amount bounds only (text pattern types never match it)
- combined: text predicate AND amount bounds when any bound is set

The matcher is pure: it never writes. Rules whose regex fails to compile are
skipped and collected in ``invalid_rules`` so the caller can flag them.
"""

import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional, Pattern, Tuple, Union
from uuid import UUID

from ..models.user_rule import MatchField, PatternType
from .normalization import collapse_whitespace, normalize_description, normalize_pattern
from .ports import TierResult

logger = logging.getLogger(__name__)

Number = Union[Decimal, float, int]

KEYWORD_CONFIDENCE = 0.75
PHRASE_CONFIDENCE = 0.90
KEYWORD_SCORE_BONUS = 0.02
KEYWORD_CONFIDENCE_CAP = 0.95


def _timestamp(value: Optional[datetime]) -> float:
    return value.timestamp() if value else 0.0


def user_rule_sort_key(rule) -> Tuple:
    """Priority desc, match_count desc, created_at desc, id asc."""
    return (
        -(rule.priority or 0),
        -(rule.match_count or 0),
        -_timestamp(rule.created_at),
        str(rule.id),
    )


def global_pattern_sort_key(pattern) -> Tuple:
    """match_count desc, created_at desc, id asc (no priority on global patterns)."""
    return (
        -(pattern.match_count or 0),
        -_timestamp(pattern.created_at),
        str(pattern.id),
    )


def amount_in_range(amount: Optional[Number], amount_min: Optional[Number], amount_max: Optional[Number]) -> bool:
    """Check abs(amount) against optional inclusive bounds.

    Returns False when both bounds are missing (nothing to test) or the
    amount is unknown.
    """
    if amount is None or (amount_min is None and amount_max is None):
        return False
    value = abs(Decimal(str(amount)))
    if amount_min is not None and value < Decimal(str(amount_min)):
        return False
    if amount_max is not None and value > Decimal(str(amount_max)):
        return False
    return True


class RuleMatcher:
    """Evaluate user rules and verified global patterns against a transaction.

    Example:
        matcher = RuleMatcher()
        result = matcher.match_user_rules(txn, rules)
        if result is None:
            result = matcher.match_category_keywords(txn, categories)
        if result is None:
            result = matcher.match_global_patterns(txn, verified_patterns)
    """

    def __init__(self, rule_confidence: float = 1.0, global_pattern_confidence: float = 0.85):
        self.rule_confidence = rule_confidence
        self.global_pattern_confidence = global_pattern_confidence
        self._regex_cache: Dict[str, Union[Pattern, re.error]] = {}
        self.invalid_rules: Dict[UUID, str] = {}
        self._keyword_cache: Dict[str, Pattern] = {}

    def compile(self, pattern: str) -> Pattern:
        """Compile a regex with IGNORECASE, caching successes and failures.

        Raises:
            re.error: If the pattern does not compile
        """
        cached = self._regex_cache.get(pattern)
        if cached is None:
            try:
                cached = re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                cached = e
            self._regex_cache[pattern] = cached
        if isinstance(cached, re.error):
            raise cached
        return cached

    def matches(self, rule, txn) -> bool:
        """Return True if a single rule (or global pattern) matches the transaction."""
        pattern_type = PatternType(rule.pattern_type)
        match_field = MatchField(rule.match_field)

        if pattern_type is PatternType.AMOUNT_RANGE:
            return amount_in_range(txn.amount, rule.amount_min, rule.amount_max)

        if match_field is MatchField.AMOUNT:
            return False

        if not self._text_matches(rule, pattern_type, txn):
            return False

        if match_field is MatchField.COMBINED and (rule.amount_min is not None or rule.amount_max is not None):
            return amount_in_range(txn.amount, rule.amount_min, rule.amount_max)

        return True

    def match_user_rules(self, txn, rules: Iterable) -> Optional[TierResult]:
        """Pick the winning user rule for a transaction.

        Args:
            txn: Transaction (description, amount, normalized_description)
            rules: The owner's rules; inactive and invalid rules are ignored

        Returns:
            TierResult with method "rule" and confidence 1.0, or None
        """
        candidates = [
            rule for rule in rules
            if rule.is_active and not rule.is_invalid and self._safe_matches(rule, txn)
        ]
        if not candidates:
            return None

        winner = min(candidates, key=user_rule_sort_key)
        return TierResult(
            category_id=winner.category_id,
            subcategory_id=winner.subcategory_id,
            confidence=self.rule_confidence,
            method="rule",
            source_id=winner.id,
            explanation=f"Matched rule '{winner.pattern}'",
        )

    def match_global_patterns(self, txn, patterns: Iterable) -> Optional[TierResult]:
        """Pick the winning verified global pattern for a transaction."""
        candidates = [
            pattern for pattern in patterns
            if pattern.is_verified and self._safe_matches(pattern, txn)
        ]
        if not candidates:
            return None

        winner = min(candidates, key=global_pattern_sort_key)
        return TierResult(
            category_id=winner.category_id,
            subcategory_id=winner.subcategory_id,
            confidence=self.global_pattern_confidence,
            method="global_pattern",
            source_id=winner.id,
            explanation=(
                f"Matched community pattern '{winner.pattern}' "
                f"({winner.agreement_count}/{winner.user_count} users agree)"
            ),
        )

    def match_category_keywords(self, txn, categories: Iterable) -> Optional[TierResult]:
        """Score each category by its keywords found as whole words in the description.

        A keyword counts 2, a multi-word phrase 3; the highest total wins and
        ties go to the earlier category. Confidence starts at 0.75 (0.90 when a
        phrase matched), gains 0.02 per point and is capped at 0.95. The
        subcategory is the first one whose keywords appear in the matched ones.
        """
        texts = self._keyword_texts(txn)
        if not texts:
            return None

        best, best_score, best_keywords = None, 0, []
        for category in categories:
            matched = [kw for kw in (category.keywords or []) if self._keyword_hits(kw, texts)]
            score = sum(3 if len(kw.split()) > 1 else 2 for kw in matched)
            if score > best_score:
                best, best_score, best_keywords = category, score, matched

        if best is None:
            return None

        base = PHRASE_CONFIDENCE if any(len(kw.split()) > 1 for kw in best_keywords) else KEYWORD_CONFIDENCE
        matched_text = " ".join(kw.lower() for kw in best_keywords)
        subcategory = next(
            (
                sub for sub in best.subcategories
                if any(kw.lower() in matched_text for kw in (sub.keywords or []))
            ),
            None,
        )
        return TierResult(
            category_id=best.id,
            subcategory_id=subcategory.id if subcategory is not None else None,
            confidence=min(base + best_score * KEYWORD_SCORE_BONUS, KEYWORD_CONFIDENCE_CAP),
            method="rule",
            source_id=None,
            explanation=f"Matched keywords: {', '.join(best_keywords)}",
        )

    def _keyword_hits(self, keyword: str, texts: Tuple[str, ...]) -> bool:
        needle = collapse_whitespace(keyword).lower()
        if not needle:
            return False
        compiled = self._keyword_cache.get(needle)
        if compiled is None:
            compiled = re.compile(rf"\b{re.escape(needle)}\b")
            self._keyword_cache[needle] = compiled
        return any(compiled.search(text) for text in texts)

    def _keyword_texts(self, txn) -> Tuple[str, ...]:
        raw = collapse_whitespace(txn.description or getattr(txn, "original_description", None)).lower()
        normalized = getattr(txn, "normalized_description", None) or ""
        return tuple(text for text in (normalized, raw) if text)

    def _safe_matches(self, rule, txn) -> bool:
        try:
            return self.matches(rule, txn)
        except re.error as e:
            if rule.id not in self.invalid_rules:
                logger.warning(
                    f"Skipping rule with invalid regex {rule.pattern!r}: {e}",
                    extra={"rule_id": str(rule.id)},
                )
                self.invalid_rules[rule.id] = f"Invalid regex: {e}"
            return False

    def _text_matches(self, rule, pattern_type: PatternType, txn) -> bool:
        raw = collapse_whitespace(txn.description or getattr(txn, "original_description", None))

        if pattern_type is PatternType.KEYWORD:
            needle = normalize_pattern(rule.pattern)
            if not needle:
                return False
            normalized = getattr(txn, "normalized_description", None) or normalize_description(raw)
            return needle in normalized or needle in raw.lower()

        # PatternType.REGEX
        return self.compile(rule.pattern).search(raw) is not None
