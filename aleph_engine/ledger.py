"""Objective ledger operations.

The ledger is an ordered list of Objective. It only grows, and an objective
that has been completed stays completed. Every operation here is a pure
function returning a new list plus the notification lines it produced; the
input list and its objectives are never mutated.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Literal

from aleph_engine.models import Objective

ObjectiveStatus = Literal["completed", "current", "locked"]


def complete(
    ledger: list[Objective], ids: Iterable[str]
) -> tuple[list[Objective], list[str]]:
    """Mark the given objective ids completed.

    Ids that are unknown or already completed are ignored.
    """
    wanted = set(ids)
    notifications: list[str] = []
    result: list[Objective] = []
    for obj in ledger:
        if obj.id in wanted and not obj.completed:
            obj = obj.model_copy(update={"completed": True})
            notifications.append(f"CHECKPOINT REACHED: {obj.label}")
        result.append(obj)
    return result, notifications


def add_new(
    ledger: list[Objective], objectives: Iterable[Objective]
) -> tuple[list[Objective], list[str]]:
    """Append objectives whose id is not in the ledger yet, always incomplete."""
    result = list(ledger)
    seen = {obj.id for obj in ledger}
    notifications: list[str] = []
    for obj in objectives:
        if obj.id in seen:
            continue
        seen.add(obj.id)
        result.append(obj.model_copy(update={"completed": False}))
        notifications.append(f"NEW OBJECTIVE: {obj.label}")
    return result, notifications


def is_completed(ledger: list[Objective], objective_id: str) -> bool:
    return any(o.id == objective_id and o.completed for o in ledger)


def current_objective(ledger: list[Objective]) -> Objective | None:
    """The first incomplete objective, in ledger order."""
    return next((o for o in ledger if not o.completed), None)


def tracker(ledger: list[Objective]) -> list[dict]:
    """Checklist rows for display.

    The first incomplete objective is current; later incomplete ones are
    locked and do not reveal their description yet.
    """
    current = current_objective(ledger)
    rows = []
    for obj in ledger:
        status: ObjectiveStatus
        if obj.completed:
            status = "completed"
        elif current is not None and obj.id == current.id:
            status = "current"
        else:
            status = "locked"
        rows.append({
            "id": obj.id,
            "label": obj.label,
            "description": obj.description if status == "current" else "",
            "status": status,
        })
    return rows
