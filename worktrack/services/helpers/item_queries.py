"""
Work item lookup and conditional-write helpers.

Services read items through ``get_item`` and write status through
``conditional_update`` so that every status change is a single
compare-and-set UPDATE:

    UPDATE <table> SET ..., version = version + 1
     WHERE id = :id AND version = :seen_version AND status = :seen_status

Zero matched rows means another request changed the item between our read
and our write; that surfaces as ConflictError (HTTP 409) instead of a
silent last-write-wins.

Usage:
    item = get_item("subtask", 12)
    conditional_update(item, {"status": "approved"})
"""

import logging

from worktrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from worktrack.models import db
from worktrack.models.project import User
from worktrack.models.work_item import ITEM_KINDS, model_for_kind

logger = logging.getLogger(__name__)


def get_item(kind: str, item_id: int):
    """Fetch a task or subtask by id.

    Raises:
        NotFoundError: no such item.
        ValidationError: unknown kind.
    """
    if kind not in ITEM_KINDS:
        raise ValidationError(f"Unknown item kind: {kind!r}", details={"kind": "must be task or subtask"})
    model = model_for_kind(kind)
    item = db.session.get(model, item_id)
    if item is None:
        raise NotFoundError(resource=model.__name__, resource_id=item_id)
    return item


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def conditional_update(item, values: dict, *, expected_status=None, expected_version=None):
    """Atomically apply ``values`` to ``item`` if nobody changed it meanwhile.

    ``expected_status`` / ``expected_version`` default to what is loaded on
    ``item``. The item is refreshed from the database afterwards.

    Raises:
        ConflictError: the guarded UPDATE matched no row.
    """
    model = type(item)
    seen_status = item.status if expected_status is None else expected_status
    seen_version = item.version if expected_version is None else expected_version

    changes = dict(values)
    changes["version"] = model.version + 1

    matched = (
        db.session.query(model)
        .filter(
            model.id == item.id,
            model.version == seen_version,
            model.status == seen_status,
        )
        .update(changes, synchronize_session=False)
    )
    if matched != 1:
        logger.warning("Conditional update lost the race", extra={"item_kind": item.kind, "item_id": item.id})
        raise ConflictError(model.__name__, item.id, seen_version)

    db.session.refresh(item)
    return item


def write_status(item, new_status: str, values: dict | None = None, *, expected_version=None):
    """Conditional status write; returns the previous status."""
    previous = item.status
    changes = dict(values or {})
    changes["status"] = new_status
    conditional_update(item, changes, expected_status=previous, expected_version=expected_version)
    return previous


def item_payload(item, **extra) -> dict:
    """Notification payload describing ``item``."""
    parent = item.parent
    project = None
    task = parent if parent is not None else item
    if task is not None and task.project is not None:
        project = task.project
    payload = {
        "title": item.title,
        "project_name": project.name if project else None,
        "parent_title": parent.title if parent is not None else None,
        "entity_kind": item.kind,
        "entity_id": item.id,
        "user_ids": item.assignee_ids,
    }
    payload.update(extra)
    return payload
