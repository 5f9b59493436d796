"""
Checklist seeding.

Checklists are read-only to the audit lifecycle; this module only installs
the default store-visit template when the database has none.
"""

import logging

from retail_audit.models import db
from retail_audit.models.checklist import Checklist, ChecklistItem, ChecklistSection, Criterion

logger = logging.getLogger(__name__)

DEFAULT_CHECKLIST_NAME = "Store Visit Checklist"


def _get_default_tree() -> list[tuple[str, list[tuple[str, list[str]]]]]:
    """(section, [(item, [criterion, ...]), ...]) in display order."""
    return [
        ("Exterior", [
            ("Parking and access", [
                "Parking area clean and free of litter",
                "Signage lit and undamaged",
            ]),
            ("Entrance", [
                "Entrance doors clean and working",
                "Trolleys and baskets available",
            ]),
        ]),
        ("Sales Floor", [
            ("Shelves", [
                "Shelves fully stocked",
                "Price labels present and correct",
                "No expired products on display",
            ]),
            ("Promotions", [
                "Promotional displays set up as planned",
                "Promotional prices match the leaflet",
            ]),
        ]),
        ("Fresh Products", [
            ("Fruit and vegetables", [
                "Produce fresh and well presented",
                "Damaged items removed",
            ]),
            ("Cold chain", [
                "Refrigerated units at correct temperature",
                "Temperature records up to date",
            ]),
        ]),
        ("Checkout and Service", [
            ("Checkouts", [
                "Queue times acceptable",
                "Checkout area clean",
            ]),
            ("Staff", [
                "Staff in uniform and identified",
                "Customer greeted and assisted",
            ]),
        ]),
    ]


def seed_default_checklist(name: str = DEFAULT_CHECKLIST_NAME) -> Checklist | None:
    """
    Insert the default checklist if no checklist exists yet.
    Safe to run multiple times.

    Returns:
        The created Checklist, or None when one was already present.
    """
    if Checklist.query.first() is not None:
        return None

    checklist = Checklist(name=name, target_role="DOT")
    for s_idx, (section_name, items) in enumerate(_get_default_tree()):
        section = ChecklistSection(name=section_name, orderindex=s_idx)
        for i_idx, (item_name, criteria) in enumerate(items):
            item = ChecklistItem(name=item_name, orderindex=i_idx)
            item.criteria = [
                Criterion(name=c, weight=1, orderindex=c_idx)
                for c_idx, c in enumerate(criteria)
            ]
            section.items.append(item)
        checklist.sections.append(section)

    db.session.add(checklist)
    db.session.flush()
    logger.info("Seeded checklist '%s' with %d criteria", name, len(checklist.criteria_ids()))
    return checklist
