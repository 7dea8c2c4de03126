"""Static task categories and operator skill catalogue."""

from __future__ import annotations

TASK_CATEGORIES: tuple[str, ...] = (
    "pickups_deliveries",
    "in_person_meetings",
    "document_signing",
    "verification",
    "photography",
    "product_testing",
    "event_attendance",
    "hardware_setup",
    "real_estate",
    "mystery_shopping",
    "sample_collection",
    "errands",
)

SKILL_CATEGORIES: dict[str, tuple[str, ...]] = {
    "physical": ("pickups", "deliveries", "errands", "heavy_lifting", "driving"),
    "professional": ("photography", "videography", "writing", "translation", "data_entry"),
    "technical": ("hardware_setup", "it_support", "testing", "debugging"),
    "social": ("event_attendance", "networking", "meetings", "presentations"),
    "verification": (
        "mystery_shopping",
        "site_inspection",
        "document_verification",
        "identity_verification",
    ),
    "specialized": ("real_estate", "legal_witness", "notary", "sample_collection"),
}

ALL_SKILLS: tuple[str, ...] = tuple(
    skill for skills in SKILL_CATEGORIES.values() for skill in skills
)
