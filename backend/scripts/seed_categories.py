#!/usr/bin/env python
"""Seed script for the system category taxonomy.

Creates the system categories and their subcategories. Safe to run
repeatedly: existing slugs are left as they are and only missing rows are
added.

Usage:
    python backend/scripts/seed_categories.py

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
"""

import sys

from sqlalchemy import select

from ledgerflow.database import get_db_session
from ledgerflow.models import Category, Subcategory

SYSTEM_CATEGORIES = {
    "food": ("Food & Dining", ["zomato", "swiggy", "restaurant", "cafe", "bakery"], [
        ("Food Delivery", "food-delivery", ["swiggy", "zomato", "uber eats"]),
        ("Dining Out", "food-dining", ["restaurant", "cafe", "coffee", "starbucks"]),
        ("Groceries", "food-groceries", ["bigbasket", "blinkit", "zepto", "grocery"]),
    ]),
    "transport": ("Transport", ["uber", "ola", "metro", "fuel", "parking"], [
        ("Ride Hailing", "transport-rides", ["uber", "ola", "rapido"]),
        ("Fuel", "transport-fuel", ["petrol", "diesel", "fuel"]),
        ("Travel", "transport-travel", ["irctc", "airlines", "flight", "redbus"]),
    ]),
    "shopping": ("Shopping", ["amazon", "flipkart", "myntra", "mall", "store"], [
        ("Online Shopping", "shopping-online", ["amazon", "flipkart", "myntra", "ajio"]),
        ("Retail", "shopping-retail", ["mall", "store", "mart"]),
    ]),
    "utilities": ("Utilities", ["electricity", "water", "gas", "broadband", "recharge"], [
        ("Electricity", "utilities-electricity", ["electricity", "bescom", "power"]),
        ("Telecom", "utilities-telecom", ["airtel", "jio", "broadband", "recharge"]),
        ("Subscriptions", "utilities-subscriptions", ["netflix", "spotify", "hotstar"]),
    ]),
    "housing": ("Housing", ["rent", "maintenance", "society"], [
        ("Rent", "housing-rent", ["rent", "rental"]),
        ("Maintenance", "housing-maintenance", ["maintenance", "society"]),
    ]),
    "health": ("Health", ["hospital", "pharmacy", "clinic", "doctor"], [
        ("Pharmacy", "health-pharmacy", ["pharmacy", "medplus", "netmeds", "pharmeasy"]),
        ("Medical", "health-medical", ["hospital", "clinic", "doctor", "diagnostic"]),
    ]),
    "entertainment": ("Entertainment", ["cinema", "movie", "bookmyshow", "gaming"], []),
    "business": ("Business Expenses", ["office", "consulting", "vendor", "supplier"], [
        ("Office Supplies", "business-office", ["office", "stationery"]),
        ("Professional Services", "business-services", ["consulting", "professional", "freelance"]),
    ]),
    "transfer": ("Transfers", ["transfer", "neft", "rtgs", "imps"], [
        ("Self Transfer", "transfer-self", ["self", "own account", "credit card payment"]),
        ("Wallet Load", "transfer-wallet", ["paytm wallet", "wallet load", "mobikwik"]),
    ]),
    "salary": ("Salary", ["salary", "payroll", "wages"], []),
    "investment": ("Investments", ["mutual fund", "sip", "zerodha", "groww"], []),
    "emi": ("Loans & EMI", ["emi", "loan", "installment"], []),
    "tax": ("Taxes", ["income tax", "gst", "tds", "challan"], []),
    "other": ("Other", [], []),
}


def main():
    """Insert missing system categories and subcategories."""
    created_categories = 0
    created_subcategories = 0

    with get_db_session() as session:
        for slug, (name, keywords, subcategories) in SYSTEM_CATEGORIES.items():
            category = session.scalar(select(Category).where(Category.slug == slug))
            if category is None:
                category = Category(name=name, slug=slug, is_system=True, keywords=keywords)
                session.add(category)
                session.flush()
                created_categories += 1

            for sub_name, sub_slug, sub_keywords in subcategories:
                exists = session.scalar(
                    select(Subcategory.id).where(
                        Subcategory.category_id == category.id,
                        Subcategory.slug == sub_slug,
                    )
                )
                if exists is None:
                    session.add(Subcategory(
                        category_id=category.id,
                        name=sub_name,
                        slug=sub_slug,
                        is_system=True,
                        keywords=sub_keywords,
                    ))
                    created_subcategories += 1

    print(f"Created {created_categories} categories and {created_subcategories} subcategories")
    return 0


if __name__ == "__main__":
    sys.exit(main())
