from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from day_planner.models import SYNC_FIELDS, ChangeKind, EventFields, RemoteEventSnapshot


@dataclass(frozen=True)
class Detection:
    kind: ChangeKind
    local_changes: List[str] = field(default_factory=list)
    remote_changes: List[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        """Both sides changed, but to the same values."""
        return self.kind == ChangeKind.NO_CHANGE and bool(self.local_changes)


def compared_fields(include_description: bool = True) -> Tuple[str, ...]:
    if include_description:
        return SYNC_FIELDS
    return tuple(f for f in SYNC_FIELDS if f != "description")


def detect_change(
    local: EventFields,
    snapshot: Optional[RemoteEventSnapshot],
    remote: EventFields,
    fields: Sequence[str] = SYNC_FIELDS,
) -> Detection:
    """
    Classify a mapped item against the last-known remote state.

    Whichever side differs from the snapshot has moved since the last sync.
    One side moving is applied automatically; both sides moving is a
    conflict unless they landed on identical values.
    """
    if snapshot is None:
        # no diff base, so only agreement is safe
        diverged = local.diff(remote, fields)
        if not diverged:
            return Detection(ChangeKind.NO_CHANGE)
        return Detection(ChangeKind.CONFLICT, diverged, diverged)

    base = snapshot.fields
    local_changes = base.diff(local, fields)
    remote_changes = base.diff(remote, fields)

    if not local_changes and not remote_changes:
        return Detection(ChangeKind.NO_CHANGE)
    if local_changes and not remote_changes:
        return Detection(ChangeKind.LOCAL_AHEAD, local_changes)
    if remote_changes and not local_changes:
        return Detection(ChangeKind.REMOTE_AHEAD, [], remote_changes)

    if not local.diff(remote, fields):
        return Detection(ChangeKind.NO_CHANGE, local_changes, remote_changes)
    return Detection(ChangeKind.CONFLICT, local_changes, remote_changes)
