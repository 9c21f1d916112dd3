"""
Item catalog access.

Plain CRUD over the ``items`` table plus the two rules the catalog owns:
``status`` and ``is_available`` always move together, and deleting a listing
releases its image blobs.
"""
from typing import Optional

import structlog
from supabase import Client

from core.config import settings
from core.db import fetch_one, fetch_rows, utcnow_iso
from core.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from models.item import ItemStatus
from services.realtime import broker

logger = structlog.get_logger(__name__)


def create_item(client: Client, owner_id: str, data: dict) -> dict:
    """List a new, available item for ``owner_id``."""
    image_urls = data.get("image_urls") or []
    if len(image_urls) > settings.max_item_images:
        raise ValidationError(f"An item can have at most {settings.max_item_images} images")
    if data.get("estimated_value", 0) < 0:
        raise ValidationError("Estimated value cannot be negative")

    now = utcnow_iso()
    record = {
        **data,
        "user_id": owner_id,
        "image_urls": image_urls,
        "is_available": True,
        "status": ItemStatus.AVAILABLE.value,
        "created_at": now,
        "updated_at": now,
    }
    row = fetch_one(client.table("items").insert(record), "create item")
    if row is None:
        raise StateConflictError("Failed to create item")

    logger.info("Item listed", item_id=row.get("id"), user_id=owner_id)
    broker.publish("items", [owner_id], "INSERT")
    return row


def get_item(client: Client, item_id: str) -> dict:
    row = fetch_one(
        client.table("items").select("*").eq("id", item_id).limit(1),
        "load item",
    )
    if row is None or row.get("deleted_at"):
        raise NotFoundError("Item not found")
    return row


def get_items(client: Client, item_ids: list[str]) -> dict[str, dict]:
    """Items keyed by id, including soft-deleted ones (history views need them)."""
    ids = sorted(set(item_ids))
    if not ids:
        return {}
    rows = fetch_rows(client.table("items").select("*").in_("id", ids), "load items")
    return {row["id"]: row for row in rows}


def list_user_items(client: Client, owner_id: str, available: Optional[bool] = None) -> list[dict]:
    """A user's listings, newest first, optionally only available or taken-down ones."""
    query = (
        client.table("items")
        .select("*")
        .eq("user_id", owner_id)
        .is_("deleted_at", "null")
    )
    if available is not None:
        query = query.eq("is_available", available)
    return fetch_rows(query.order("created_at", desc=True), "load items")


def _owned_item(client: Client, item_id: str, actor_id: str) -> dict:
    item = get_item(client, item_id)
    if item["user_id"] != actor_id:
        raise AuthorizationError("You can only change your own items")
    return item


def update_item(client: Client, item_id: str, actor_id: str, patch: dict) -> dict:
    """Edit listing details (title, description, condition, value, images)."""
    if not patch:
        raise ValidationError("No fields to update")
    if len(patch.get("image_urls") or []) > settings.max_item_images:
        raise ValidationError(f"An item can have at most {settings.max_item_images} images")

    _owned_item(client, item_id, actor_id)
    patch = {**patch, "updated_at": utcnow_iso()}
    row = fetch_one(client.table("items").update(patch).eq("id", item_id), "update item")
    if row is None:
        raise NotFoundError("Item not found")

    broker.publish("items", [actor_id], "UPDATE")
    return row


def set_availability(client: Client, item_id: str, actor_id: str, available: bool) -> dict:
    """Take an item down or repost it. Traded items stay off the market."""
    item = _owned_item(client, item_id, actor_id)
    if item.get("status") == ItemStatus.TRADED.value:
        raise StateConflictError("This item has been traded and cannot be reposted or taken down")

    status = ItemStatus.AVAILABLE if available else ItemStatus.UNAVAILABLE
    row = fetch_one(
        client.table("items")
        .update({"is_available": available, "status": status.value, "updated_at": utcnow_iso()})
        .eq("id", item_id),
        "take down item" if not available else "repost item",
    )
    if row is None:
        raise NotFoundError("Item not found")

    logger.info("Item availability changed", item_id=item_id, is_available=available)
    broker.publish("items", [actor_id], "UPDATE")
    return row


def mark_traded(client: Client, item_ids: list[str]) -> list[dict]:
    """Reserve items for an accepted trade. Safe to repeat."""
    return fetch_rows(
        client.table("items")
        .update({
            "is_available": False,
            "status": ItemStatus.TRADED.value,
            "updated_at": utcnow_iso(),
        })
        .in_("id", item_ids),
        "reserve traded items",
    )


def image_paths(image_urls: list[str], bucket: str) -> list[str]:
    """Storage paths of public URLs that live in ``bucket``."""
    marker = f"/{bucket}/"
    paths = []
    for url in image_urls or []:
        _, found, path = url.partition(marker)
        if found and path:
            paths.append(path)
    return paths


def delete_item(client: Client, item_id: str, actor_id: str) -> None:
    """
    Soft-delete a listing and release its images.

    The row is kept (trade history references it) but hidden from every
    listing. Blob removal is best-effort: a storage failure is logged and
    does not undo the delete.
    """
    item = _owned_item(client, item_id, actor_id)

    fetch_one(
        client.table("items")
        .update({
            "deleted_at": utcnow_iso(),
            "is_available": False,
            "status": ItemStatus.UNAVAILABLE.value
            if item.get("status") != ItemStatus.TRADED.value
            else ItemStatus.TRADED.value,
            "image_urls": [],
            "updated_at": utcnow_iso(),
        })
        .eq("id", item_id),
        "delete item",
    )
    logger.info("Item deleted", item_id=item_id, user_id=actor_id)
    broker.publish("items", [actor_id], "DELETE")

    paths = image_paths(item.get("image_urls") or [], settings.item_images_bucket)
    if not paths:
        return
    try:
        client.storage.from_(settings.item_images_bucket).remove(paths)
    except Exception as exc:  # storage3 raises its own error types
        logger.warning(
            "Failed to remove item images",
            item_id=item_id,
            paths=paths,
            error=str(exc),
        )
