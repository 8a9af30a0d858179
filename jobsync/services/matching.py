from __future__ import annotations

from jobsync.schemas.alerts import AlertSubscription
from jobsync.schemas.jobs import CanonicalJob


def subscription_matches(subscription: AlertSubscription, job: CanonicalJob) -> bool:
    """Every non-empty filter must match; a subscription with no filters matches nothing."""
    if not subscription.has_filters:
        return False

    if subscription.categories and job.category not in subscription.categories:
        return False

    if subscription.experience_levels and job.experience_level not in subscription.experience_levels:
        return False

    if subscription.locations and not _contains_any(job.location, subscription.locations):
        return False

    if subscription.keywords and not _contains_any(f"{job.title} {job.description}", subscription.keywords):
        return False

    if subscription.organizations and not _contains_any(job.organization, subscription.organizations):
        return False

    return True


def _contains_any(haystack: str, needles: list[str]) -> bool:
    text = haystack.lower()
    return any(needle.strip().lower() in text for needle in needles if needle.strip())
