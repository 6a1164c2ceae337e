"""Project lifecycle engine.

Owns the review state machine (``pending`` -> ``verified`` | ``rejected``),
priority classification, and every figure derived from a project's raw
fields. Nothing in here touches the database: callers load a snapshot,
call into this module, and persist the result themselves.

Functions accept any object exposing the ``Project`` column attributes, so
they work on ORM instances whether or not they are attached to a session.
"""

import datetime
import enum
import math
from typing import Iterable, List, NamedTuple, Optional

from carbonsync.config import DEFAULT_PRICE_PER_CREDIT
from carbonsync.exceptions import InvalidTransition, NotFound, ValidationError
from carbonsync.logger import get_logger
from carbonsync.models import PENDING, REJECTED, VERIFIED, utcnow

logger = get_logger(__name__)

TREES_PER_TON = 50
HIGH_PRIORITY_AREA = 30
MEDIUM_PRIORITY_AREA = 15

# Placeholder figures. None of these come from a measurement or a review system.
VEGETATION_MULTIPLIER = 0.9
PLACEHOLDER_RATING = 4.7
PLACEHOLDER_REVIEW_COUNT = 15
UNKNOWN_ORGANIZATION = "Unknown NGO"

SORT_NEWEST = "newest"
SORT_PRICE_LOW = "price-low"
SORT_PRICE_HIGH = "price-high"
SORT_RATING = "rating"
SORT_CREDITS = "credits"
SORT_KEYS = (SORT_NEWEST, SORT_PRICE_LOW, SORT_PRICE_HIGH, SORT_RATING, SORT_CREDITS)

ANY = "all"

_EARLIEST = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


class Priority(str, enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class CreditDisplay(NamedTuple):
    """Credit amount shown to a user; ``approximate`` renders with a ``~``."""

    amount: float
    approximate: bool

    @property
    def label(self) -> str:
        text = _format_amount(self.amount)
        return f"~{text}" if self.approximate else text

    def __str__(self):
        return self.label


class ImpactEstimate(NamedTuple):
    trees_planted: float
    carbon_sequestered: float
    communities_benefited: int
    jobs_created: int


class ProjectMetrics(NamedTuple):
    priority: Priority
    displayed_credits: CreditDisplay
    estimated_trees: float
    vegetation_increase_percent: int
    price_per_credit: float
    total_value: float
    impact: ImpactEstimate


class ProjectStats(NamedTuple):
    pending_count: int
    verified_count: int
    rejected_count: int
    total_credits_issued: float
    active_organization_count: int

    @property
    def total_count(self) -> int:
        return self.pending_count + self.verified_count + self.rejected_count


class MarketplaceEntry(NamedTuple):
    project_id: str
    project_name: str
    organization_name: str
    project_type: str
    location: str
    area_hectares: float
    credits_available: float
    price_per_credit: float
    total_value: float
    estimated_trees: float
    rating: float
    review_count: int
    verification_date: Optional[datetime.datetime]
    impact: ImpactEstimate
    tree_species: List[str]
    media_urls: List[str]


class MarketStats(NamedTuple):
    total_credits: float
    average_price: float
    total_value: float
    active_projects: int


# --- State machine ---

def approve(project, notes: Optional[str] = None, now: Optional[datetime.datetime] = None):
    """Move a pending project to ``verified``.

    Notes are optional on approval. Raises ``NotFound`` for a missing record
    and ``InvalidTransition`` if the project already left ``pending``; in
    both cases the project is not touched.
    """
    _require_pending(project, "approve")
    project.status = VERIFIED
    project.verification_date = now or utcnow()
    project.verification_notes = notes or ""
    logger.info("Project approved", project_id=project.id, status=project.status)
    return project


def reject(project, notes: Optional[str], now: Optional[datetime.datetime] = None):
    """Move a pending project to ``rejected``. A non-blank reason is required.

    Rejected projects are kept and stay visible with their status.
    """
    _require_pending(project, "reject")
    if notes is None or not notes.strip():
        raise ValidationError("reason required")
    project.status = REJECTED
    project.verification_date = now or utcnow()
    project.verification_notes = notes.strip()
    logger.info("Project rejected", project_id=project.id, status=project.status)
    return project


def _require_pending(project, action: str):
    if project is None:
        raise NotFound("Project not found")
    if project.status != PENDING:
        logger.warning(
            "Rejected transition out of terminal state",
            project_id=project.id,
            status=project.status,
            action=action,
        )
        raise InvalidTransition(f"Cannot {action} a project that is already {project.status}")


# --- Classification & derived metrics ---

def classify_priority(project) -> Priority:
    if project.area_hectares > HIGH_PRIORITY_AREA or "mangrove" in (project.project_type or "").lower():
        return Priority.HIGH
    if project.area_hectares > MEDIUM_PRIORITY_AREA:
        return Priority.MEDIUM
    return Priority.LOW


def estimated_trees(project) -> float:
    return project.estimated_co2_tons * TREES_PER_TON


def displayed_credits(project) -> CreditDisplay:
    # The number itself never changes with status; pending only marks it as approximate.
    if project.status == VERIFIED:
        return CreditDisplay(project.estimated_co2_tons, False)
    if project.status == PENDING:
        return CreditDisplay(project.estimated_co2_tons, True)
    if project.status == REJECTED:
        return CreditDisplay(0, False)
    raise ValidationError(f"Unknown project status {project.status!r}")


def vegetation_increase_percent(project) -> int:
    """Stand-in for satellite analysis: a fixed share of the declared area.

    Rounds half up.
    """
    return int(math.floor(project.area_hectares * VEGETATION_MULTIPLIER + 0.5))


def listing_price(project) -> float:
    price = getattr(project, "price_per_credit", None)
    return DEFAULT_PRICE_PER_CREDIT if price is None else price


def total_value(project, price_per_credit: Optional[float] = None) -> float:
    if price_per_credit is None:
        price_per_credit = listing_price(project)
    return project.estimated_co2_tons * price_per_credit


def impact_estimate(project) -> ImpactEstimate:
    # Community and job figures are rough placeholders scaled by area.
    return ImpactEstimate(
        trees_planted=estimated_trees(project),
        carbon_sequestered=project.estimated_co2_tons,
        communities_benefited=max(1, math.floor(project.area_hectares / 5)),
        jobs_created=max(5, math.floor(project.area_hectares * 2)),
    )


def project_metrics(project) -> ProjectMetrics:
    price = listing_price(project)
    return ProjectMetrics(
        priority=classify_priority(project),
        displayed_credits=displayed_credits(project),
        estimated_trees=estimated_trees(project),
        vegetation_increase_percent=vegetation_increase_percent(project),
        price_per_credit=price,
        total_value=total_value(project, price),
        impact=impact_estimate(project),
    )


def project_stats(projects: Iterable) -> ProjectStats:
    pending = verified = rejected = 0
    credits_issued = 0.0
    submitters = set()
    for project in projects:
        submitters.add(project.submitted_by)
        if project.status == PENDING:
            pending += 1
        elif project.status == VERIFIED:
            verified += 1
            credits_issued += project.estimated_co2_tons or 0
        elif project.status == REJECTED:
            rejected += 1
    return ProjectStats(
        pending_count=pending,
        verified_count=verified,
        rejected_count=rejected,
        total_credits_issued=credits_issued,
        active_organization_count=len(submitters),
    )


# --- Marketplace ---

def build_marketplace_entry(project) -> MarketplaceEntry:
    price = listing_price(project)
    rating = getattr(project, "rating", None)
    review_count = getattr(project, "review_count", None)
    return MarketplaceEntry(
        project_id=project.id,
        project_name=project.title,
        organization_name=getattr(project, "organization_name", None) or UNKNOWN_ORGANIZATION,
        project_type=project.project_type,
        location=project.location_name,
        area_hectares=project.area_hectares,
        credits_available=project.estimated_co2_tons,
        price_per_credit=price,
        total_value=total_value(project, price),
        estimated_trees=estimated_trees(project),
        rating=PLACEHOLDER_RATING if rating is None else rating,
        review_count=PLACEHOLDER_REVIEW_COUNT if review_count is None else review_count,
        # verification_date is always set on verified projects; created_at only covers bad rows.
        verification_date=project.verification_date or project.created_at,
        impact=impact_estimate(project),
        tree_species=list(project.tree_species or []),
        media_urls=list(project.media_urls or []),
    )


def list_marketplace_entries(
    projects: Iterable,
    sort: str = SORT_NEWEST,
    query: Optional[str] = None,
    project_type: Optional[str] = None,
    location: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> List[MarketplaceEntry]:
    """Verified projects as marketplace listings, filtered then sorted.

    Filters compose with AND. Sorting is stable, so ties keep the order of
    ``projects``.
    """
    if sort not in SORT_KEYS:
        raise ValidationError(f"Unsupported sort key {sort!r}; expected one of {', '.join(SORT_KEYS)}")
    entries = [build_marketplace_entry(p) for p in projects if p.status == VERIFIED]
    entries = [
        e for e in entries
        if _matches_query(e, query)
        and _matches_category(e.project_type, project_type)
        and _matches_location(e.location, location)
        and _matches_price(e.price_per_credit, min_price, max_price)
    ]
    return sort_entries(entries, sort)


def sort_entries(entries: List[MarketplaceEntry], sort: str = SORT_NEWEST) -> List[MarketplaceEntry]:
    key, descending = _SORTS[sort]
    return sorted(entries, key=key, reverse=descending)


_SORTS = {
    SORT_NEWEST: (lambda e: _as_utc(e.verification_date), True),
    SORT_PRICE_LOW: (lambda e: e.price_per_credit, False),
    SORT_PRICE_HIGH: (lambda e: e.price_per_credit, True),
    SORT_RATING: (lambda e: e.rating, True),
    SORT_CREDITS: (lambda e: e.credits_available, True),
}


def market_stats(entries: List[MarketplaceEntry]) -> MarketStats:
    if not entries:
        return MarketStats(total_credits=0, average_price=0, total_value=0, active_projects=0)
    return MarketStats(
        total_credits=sum(e.credits_available for e in entries),
        average_price=sum(e.price_per_credit for e in entries) / len(entries),
        total_value=sum(e.total_value for e in entries),
        active_projects=len(entries),
    )


def _matches_query(entry: MarketplaceEntry, query: Optional[str]) -> bool:
    if not query:
        return True
    needle = query.lower()
    return any(
        needle in (field or "").lower()
        for field in (entry.project_name, entry.organization_name, entry.location)
    )


def _matches_category(value: str, wanted: Optional[str]) -> bool:
    if not wanted or wanted.lower() == ANY:
        return True
    return _category(wanted) in _category(value)


def _matches_location(value: str, wanted: Optional[str]) -> bool:
    if not wanted or wanted.lower() == ANY:
        return True
    return wanted.lower() in (value or "").lower()


def _matches_price(price: float, low: Optional[float], high: Optional[float]) -> bool:
    if low is not None and price < low:
        return False
    if high is not None and price > high:
        return False
    return True


def _category(value: Optional[str]) -> str:
    return (value or "").replace("_", " ").lower()


def _as_utc(value: Optional[datetime.datetime]) -> datetime.datetime:
    # SQLite hands back naive datetimes; everything stored here is UTC.
    if value is None:
        return _EARLIEST
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return str(amount)
