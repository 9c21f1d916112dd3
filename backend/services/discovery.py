"""
Discovery feed.

Builds the swipe deck for a viewer: other people's available listings,
newest first, minus everything the viewer has already dealt with. Two
optional heuristics narrow it further: value similarity to the viewer's own
listings and distance to the item's owner.
"""
import math
from typing import Iterable, Optional

import structlog
from supabase import Client

from core.config import settings
from core.db import fetch_rows
from services.profiles import get_profiles

logger = structlog.get_logger(__name__)

ACTIVE_TRADE_STATUSES = ["pending", "accepted"]
EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def within_value_range(value: float, reference_values: list[float]) -> bool:
    """True when ``value`` is close to any reference (30% or $10, whichever is larger)."""
    if not reference_values:
        return True
    for reference in reference_values:
        tolerance = max(reference * settings.value_tolerance_ratio, settings.value_tolerance_min)
        if abs(value - reference) <= tolerance:
            return True
    return False


def excluded_item_ids(client: Client, viewer_id: str) -> set[str]:
    """Items the viewer already has an active request for."""
    own_requests = fetch_rows(
        client.table("trade_requests")
        .select("target_item_id")
        .eq("requester_id", viewer_id)
        .in_("status", ACTIVE_TRADE_STATUSES),
        "load your trade requests",
    )
    return {row["target_item_id"] for row in own_requests}


def in_accepted_trades(client: Client, item_ids: list[str]) -> set[str]:
    """
    The subset of ``item_ids`` that sits in an accepted trade.

    Accepting marks both items traded, but a failed follow-up can leave them
    available until the acceptance is completed.
    """
    if not item_ids:
        return set()
    found: set[str] = set()
    for column in ("requester_item_id", "target_item_id"):
        rows = fetch_rows(
            client.table("trade_requests")
            .select(column)
            .eq("status", "accepted")
            .in_(column, item_ids),
            "load accepted trades",
        )
        found.update(row[column] for row in rows)
    return found


def _candidate_batch(client: Client, viewer_id: str, offset: int, size: int) -> list[dict]:
    return fetch_rows(
        client.table("items")
        .select("*")
        .neq("user_id", viewer_id)
        .eq("is_available", True)
        .is_("deleted_at", "null")
        .order("created_at", desc=True)
        .order("id")
        .range(offset, offset + size - 1),
        "load items",
    )


def get_feed(
    client: Client,
    viewer_id: str,
    seen_ids: Iterable[str] = (),
    limit: Optional[int] = None,
    value_match: bool = False,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius_km: Optional[float] = None,
) -> list[dict]:
    """
    Candidate items for ``viewer_id``, newest first.

    Listings are scanned in ``feed_batch_size`` pages until the feed page is
    full or no listings are left, so filters that reject the newest rows
    never hide older matches.

    Args:
        seen_ids: Items already swiped this session; never persisted here.
        limit: Page size, capped at ``feed_max_page_size``.
        value_match: Keep only items close in value to the viewer's listings.
        latitude, longitude, radius_km: When all are given, keep only items
            whose owner is within the radius. Owners without a location are
            left out while this filter is on.

    Returns:
        Item rows, each with ``owner`` (profile or None) and ``distance_km``.

    Raises:
        TransientIOError: any read failed; callers show an empty, retryable page.
    """
    page_size = min(limit or settings.feed_page_size, settings.feed_max_page_size)
    excluded = set(seen_ids) | excluded_item_ids(client, viewer_id)
    use_distance = latitude is not None and longitude is not None and radius_km is not None

    references: Optional[list[float]] = None
    if value_match:
        own_items = fetch_rows(
            client.table("items")
            .select("estimated_value")
            .eq("user_id", viewer_id)
            .eq("is_available", True)
            .is_("deleted_at", "null"),
            "load your items",
        )
        references = [float(item["estimated_value"] or 0) for item in own_items]

    feed: list[dict] = []
    batch_size = settings.feed_batch_size
    offset = 0
    scanned = 0
    while len(feed) < page_size:
        batch = _candidate_batch(client, viewer_id, offset, batch_size)
        offset += batch_size
        scanned += len(batch)

        candidates = [item for item in batch if item["id"] not in excluded]
        if references is not None:
            candidates = [
                item for item in candidates
                if within_value_range(float(item["estimated_value"] or 0), references)
            ]
        traded = in_accepted_trades(client, [item["id"] for item in candidates])
        candidates = [item for item in candidates if item["id"] not in traded]

        owners = get_profiles(client, (item["user_id"] for item in candidates))
        for item in candidates:
            owner = owners.get(item["user_id"])
            distance = None
            if owner and owner.get("latitude") is not None and owner.get("longitude") is not None \
                    and latitude is not None and longitude is not None:
                distance = haversine_km(latitude, longitude, float(owner["latitude"]), float(owner["longitude"]))
            if use_distance and (distance is None or distance > radius_km):
                continue
            feed.append({
                **item,
                "owner": owner,
                "distance_km": round(distance, 1) if distance is not None else None,
            })
            if len(feed) >= page_size:
                break

        if len(batch) < batch_size:
            break

    logger.debug("Feed built", user_id=viewer_id, size=len(feed), scanned=scanned, excluded=len(excluded))
    return feed
