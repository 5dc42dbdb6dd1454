"""Change detection for child records.

A child is compared with the snapshot taken when it was last loaded from
(or saved to) the server. Identity and audit fields are ignored on both
sides because persistence itself changes them.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .schemas import AUDIT_FIELDS, IDENTITY_FIELDS, ChildRecord

IGNORED_FIELDS = IDENTITY_FIELDS | AUDIT_FIELDS


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


def normalize(record: ChildRecord) -> Dict[str, Any]:
    """Projection of a record used for equality checks."""
    return record.to_values(exclude=IGNORED_FIELDS)


def classify(record: ChildRecord, original: Optional[ChildRecord]) -> Action:
    if record.persisted_id is None:
        return Action.CREATE
    if original is not None and normalize(record) == normalize(original):
        return Action.SKIP
    return Action.UPDATE


@dataclass
class ChangeSet:
    creates: List[ChildRecord] = field(default_factory=list)
    updates: List[ChildRecord] = field(default_factory=list)
    skips: List[ChildRecord] = field(default_factory=list)
    deletes: List[int] = field(default_factory=list)

    @property
    def writes(self) -> List[ChildRecord]:
        return self.creates + self.updates

    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


def plan_changes(records: Iterable[ChildRecord],
                 originals: Optional[Mapping[int, ChildRecord]] = None,
                 deleted_ids: Iterable[int] = (),
                 diff: bool = True) -> ChangeSet:
    """Split a collection into creates, updates, skips and deletes.

    With ``diff=False`` every persisted record is an update.
    """
    originals = originals or {}
    changes = ChangeSet()
    for record in records:
        action = classify(record, originals.get(record.persisted_id) if diff else None)
        if action == Action.CREATE:
            changes.creates.append(record)
        elif action == Action.UPDATE:
            changes.updates.append(record)
        else:
            changes.skips.append(record)
    # Duplicates in the tracking list would otherwise issue two deletes.
    changes.deletes = list(dict.fromkeys(i for i in deleted_ids if i is not None))
    return changes
