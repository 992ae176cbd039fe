"""SQLAlchemy Models for LedgerFlow"""

from .base import Base, PortableJSONB, PortableVector
from .category import Category, Subcategory
from .user_rule import UserRule, PatternType, MatchField, RuleSource
from .global_pattern import GlobalPattern, GlobalPatternContributor
from .labeled_example import LabeledExample, ExampleSource
from .transaction import (
    Transaction,
    CategorizationStatus,
    CategorySource,
    TransactionType,
    TERMINAL_STATUSES,
)
from .invoice import Invoice, InvoiceStatus, MatchedBy

__all__ = [
    "Base",
    "PortableJSONB",
    "PortableVector",
    "Category",
    "Subcategory",
    "UserRule",
    "PatternType",
    "MatchField",
    "RuleSource",
    "GlobalPattern",
    "GlobalPatternContributor",
    "LabeledExample",
    "ExampleSource",
    "Transaction",
    "CategorizationStatus",
    "CategorySource",
    "TransactionType",
    "TERMINAL_STATUSES",
    "Invoice",
    "InvoiceStatus",
    "MatchedBy",
]
