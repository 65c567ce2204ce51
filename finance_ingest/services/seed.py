"""
Default finance rules and categories.

Seeding is idempotent: rows are upserted by name, so re-running refreshes
definitions without creating duplicates.
"""

from typing import Any

from finance_ingest.core.database import Database
from finance_ingest.core.logging import get_logger
from finance_ingest.core.models import Category
from finance_ingest.rules.models import FinanceRule

log = get_logger(__name__)


DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "name": "Invoice Attachment Detection",
        "scope": "email",
        "priority": 10,
        "enabled": True,
        "stopProcessing": False,
        "conditions": {
            "subjectContainsAny": ["invoice", "receipt", "vat", "statement"],
        },
        "actions": {
            "createDocument": True,
            "createLedgerEntry": True,
            "setStatus": "needs_approval",
            "confidence": 0.9,
        },
    },
    {
        "name": "Known Supplier Auto-Categorisation",
        "scope": "categorisation",
        "priority": 20,
        "enabled": True,
        "stopProcessing": False,
        "conditions": {
            "senderDomainIn": ["bigyellow.co.uk"],
        },
        "actions": {
            "setCategoryName": "Premises: Storage",
            "setVatTreatment": "standard",
            "confidence": 0.95,
        },
    },
    {
        "name": "eBay Fee Detection",
        "scope": "transaction",
        "priority": 30,
        "enabled": True,
        "stopProcessing": False,
        "conditions": {
            "descriptionContainsAny": ["ebay"],
            "amountLessThan": 0,
        },
        "actions": {
            "suggestCategoryName": "Platform Fees",
            "suggestCounterparty": "eBay",
            "confidence": 0.9,
        },
    },
    {
        "name": "Shopify Payout Recognition",
        "scope": "transaction",
        "priority": 40,
        "enabled": True,
        "stopProcessing": False,
        "conditions": {
            "descriptionContainsAny": ["shopify", "payout"],
            "amountGreaterThan": 0,
        },
        "actions": {
            "suggestCategoryName": "Sales Income",
            "confidence": 0.9,
        },
    },
    {
        "name": "Trusted Supplier Auto-Approve",
        "scope": "approval",
        "priority": 50,
        "enabled": True,
        "stopProcessing": False,
        "conditions": {
            "senderDomainIn": ["bigyellow.co.uk"],
        },
        "actions": {
            "autoApprove": True,
            "confidence": 0.92,
        },
    },
]

DEFAULT_CATEGORIES: list[Category] = [
    Category("Sales Income", direction="income", hmrc_bucket_id="turnover"),
    Category("Platform Fees", direction="expense", hmrc_bucket_id="cost_of_goods"),
    Category(
        "Premises: Storage",
        direction="expense",
        hmrc_bucket_id="premises_running_costs",
        vat_treatment="standard",
    ),
    Category("Postage & Shipping", direction="expense", hmrc_bucket_id="office_property_costs"),
    Category("Software & Subscriptions", direction="expense", hmrc_bucket_id="office_property_costs"),
    Category("Professional Services", direction="expense", hmrc_bucket_id="legal_financial_costs"),
    Category("Travel", direction="expense", hmrc_bucket_id="travel_costs"),
    Category("Advertising & Marketing", direction="expense", hmrc_bucket_id="advertising_costs"),
]


def seed_default_rules(db: Database) -> dict[str, int]:
    """Upsert DEFAULT_RULES by name. Returns created/updated counts."""
    created = updated = 0
    for definition in DEFAULT_RULES:
        if db.upsert_rule(FinanceRule.from_dict(definition)):
            created += 1
        else:
            updated += 1
    log.info("default_rules_seeded", created=created, updated=updated)
    return {"created": created, "updated": updated}


def seed_default_categories(db: Database) -> dict[str, Any]:
    """Upsert DEFAULT_CATEGORIES by name (always re-activated)."""
    created: list[str] = []
    updated: list[str] = []
    for category in DEFAULT_CATEGORIES:
        if db.upsert_category(category):
            created.append(category.name)
        else:
            updated.append(category.name)
    log.info("default_categories_seeded", created=len(created), updated=len(updated))
    return {
        "createdCount": len(created),
        "updatedCount": len(updated),
        "created": created,
        "updated": updated,
    }
