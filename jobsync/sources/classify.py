"""Keyword classification for sources that don't supply category or seniority.

Rules are checked in order and the first hit wins, so each table's order is
part of its behavior.
"""

from __future__ import annotations

from collections.abc import Sequence

Rule = tuple[tuple[str, ...], str]


def classify(text: str | None, rules: Sequence[Rule], *, default: str) -> str:
    lowered = (text or "").lower()
    if not lowered:
        return default
    for keywords, label in rules:
        if any(keyword in lowered for keyword in keywords):
            return label
    return default


RELIEFWEB_EXPERIENCE_RULES: tuple[Rule, ...] = (
    (("0", "1", "2", "entry"), "Entry"),
    (("3", "4", "5", "mid"), "Mid"),
    (("senior", "10", "15", "executive"), "Senior"),
)

ETHIOJOBS_CATEGORY_RULES: tuple[Rule, ...] = (
    (("accounting",), "Finance/Accounting"),
    (("finance",), "Finance/Accounting"),
    (("it",), "Information Technology"),
    (("technology",), "Information Technology"),
    (("health",), "Health"),
    (("medical",), "Health"),
    (("education",), "Education"),
    (("hr",), "Human Resources"),
    (("logistics",), "Logistics/Procurement"),
    (("procurement",), "Logistics/Procurement"),
    (("admin",), "Administration"),
    (("marketing",), "Communications"),
    (("ngo",), "Program Management"),
)

ETHIOJOBS_EXPERIENCE_RULES: tuple[Rule, ...] = (
    (("senior", "manager", "head"), "Senior"),
    (("junior", "entry", "assistant"), "Entry"),
    (("director", "chief"), "Director"),
)

INDEED_CATEGORY_RULES: tuple[Rule, ...] = (
    (("health", "medical", "doctor", "nurse", "clinic"), "Health"),
    (("education", "teacher", "training", "academic"), "Education"),
    (("finance", "accounting", "audit", "budget"), "Finance/Accounting"),
    (("software", "developer", "programmer", "tech"), "Information Technology"),
    (("logistics", "supply", "procurement", "warehouse"), "Logistics/Procurement"),
    (("hr", "human resource", "recruitment"), "Human Resources"),
    (("program", "project", "coordinator"), "Program Management"),
    (("communication", "marketing", "media"), "Communications"),
    (("m&e", "monitoring", "evaluation", "data"), "Monitoring & Evaluation"),
    (("admin", "office", "receptionist"), "Administration"),
)

INDEED_EXPERIENCE_RULES: tuple[Rule, ...] = (
    (("senior", "lead", "principal", "manager", "head"), "Senior"),
    (("director", "chief", "vp", "executive"), "Director"),
    (("junior", "entry", "associate", "assistant", "intern"), "Entry"),
)

ETHIO_API_CATEGORY_RULES: tuple[Rule, ...] = (
    (("tech", "software", "it", "developer"), "IT"),
    (("finance", "account", "bank"), "Finance"),
    (("health", "medical", "nurse"), "Health"),
    (("marketing", "sales"), "Marketing"),
    (("education", "teacher", "training"), "Education"),
    (("engineering", "construction"), "Construction"),
    (("logistics", "driver", "transport"), "Logistics"),
    (("admin", "secretary", "hr"), "Admin"),
)

JOB_TYPE_EXPERIENCE_RULES: tuple[Rule, ...] = (
    (("intern", "junior", "entry", "associate"), "Entry"),
    (("senior", "lead", "director", "manager", "head"), "Senior"),
)


def reliefweb_experience(names: Sequence[str]) -> str:
    if not names:
        return "Unknown"
    return classify(names[0], RELIEFWEB_EXPERIENCE_RULES, default="Mid")


def job_type_experience(value: str | None) -> str:
    return classify(value, JOB_TYPE_EXPERIENCE_RULES, default="Mid")
