"""Manual user-rule management.

Rules are validated on write (regex must compile, category and subcategory
must exist and agree) so that only learned or legacy rules can ever reach
the matcher's invalid-regex path.
"""

import logging
import re
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Category, Subcategory, UserRule
from ..models.user_rule import PatternType
from .normalization import normalize_pattern
from .pattern_store import PatternStore
from .ports import NotFoundError, RuleValidationError

logger = logging.getLogger(__name__)


class DuplicateRuleError(RuleValidationError):
    """A rule with the same pattern already exists for this user."""
    pass


class RuleService:
    """CRUD for a user's categorization rules."""

    def __init__(self, db: Session):
        self.db = db
        self.store = PatternStore(db)

    def list_rules(self, user_id: UUID) -> List[UserRule]:
        return self.store.list_rules(user_id)

    def create_rule(self, user_id: UUID, data: dict) -> UserRule:
        """Validate and insert a manual rule.

        Raises:
            RuleValidationError: Invalid regex or category
            DuplicateRuleError: Same pattern already exists for the user
        """
        data = {key: _enum_value(value) for key, value in data.items()}
        self._validate(data)
        try:
            rule = self.store.create_rule(user_id, **data)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateRuleError(f"Rule '{normalize_pattern(data['pattern'], data.get('pattern_type'))}' already exists") from e

        logger.info(f"Created rule '{rule.pattern}'", extra={"user_id": str(user_id)})
        return rule

    def update_rule(self, user_id: UUID, rule_id: UUID, changes: dict) -> UserRule:
        """Apply a partial update; re-validates the resulting rule.

        A successful update clears a previous invalid-regex flag.
        """
        rule = self._get(user_id, rule_id)
        changes = {key: _enum_value(value) for key, value in changes.items()}
        if "pattern" in changes:
            changes["pattern"] = normalize_pattern(
                changes["pattern"], changes.get("pattern_type", rule.pattern_type)
            )

        merged = {
            "pattern": rule.pattern,
            "pattern_type": rule.pattern_type,
            "amount_min": rule.amount_min,
            "amount_max": rule.amount_max,
            "category_id": rule.category_id,
            "subcategory_id": rule.subcategory_id,
        }
        merged.update({key: value for key, value in changes.items() if key in merged})
        self._validate(merged)

        for key, value in changes.items():
            setattr(rule, key, value)
        rule.is_invalid = False
        rule.invalid_reason = None

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateRuleError(f"Rule '{changes.get('pattern')}' already exists") from e
        self.db.refresh(rule)
        return rule

    def delete_rule(self, user_id: UUID, rule_id: UUID) -> None:
        rule = self._get(user_id, rule_id)
        self.db.delete(rule)
        self.db.commit()

    def _get(self, user_id: UUID, rule_id: UUID) -> UserRule:
        rule = self.store.get_rule(user_id, rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found")
        return rule

    def _validate(self, data: dict) -> None:
        if data.get("pattern_type") == PatternType.REGEX.value:
            try:
                re.compile(data["pattern"], re.IGNORECASE)
            except re.error as e:
                raise RuleValidationError(f"Invalid regex: {e}") from e

        amount_min, amount_max = data.get("amount_min"), data.get("amount_max")
        if data.get("pattern_type") == PatternType.AMOUNT_RANGE.value and amount_min is None and amount_max is None:
            raise RuleValidationError("amount_range rules require amount_min or amount_max")
        if amount_min is not None and amount_max is not None and amount_min > amount_max:
            raise RuleValidationError("amount_min must not exceed amount_max")

        category_id: Optional[UUID] = data.get("category_id")
        if category_id is None or self.db.get(Category, category_id) is None:
            raise RuleValidationError(f"Category {category_id} does not exist")
        subcategory_id = data.get("subcategory_id")
        if subcategory_id is not None:
            subcategory = self.db.get(Subcategory, subcategory_id)
            if subcategory is None or subcategory.category_id != category_id:
                raise RuleValidationError(
                    f"Subcategory {subcategory_id} does not belong to category {category_id}"
                )


def _enum_value(value):
    return getattr(value, "value", value)
