"""
Queue reconciliation for the live OPD board.

A client-side view of the queue is fed from two directions: periodic
full snapshots and incremental change events from the ``opd_queue``
push channel. The functions here merge both into a single ordered,
duplicate-free list and compute the transient ``is_new`` flag used to
highlight arrivals. They are pure: no I/O, no shared state, inputs are
never mutated. Callers are expected to serialize calls against a given
view (see :class:`opd.realtime.feed.QueueFeed`).

Ordering: active entries (waiting, assigned) come before completed
ones; inside a bucket the longest-waiting patient is first
(``enqueued_at`` ascending), ties broken by id. A freshly inserted
patient therefore lands at the end of the active bucket and is marked
through ``is_new`` instead of being moved to the top.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone as dt_timezone
from typing import AbstractSet, Iterable, Mapping, Optional, Union

import structlog
from django.utils import timezone
from django.utils.dateparse import parse_datetime

log = structlog.get_logger(__name__)

WAITING = 'waiting'
ASSIGNED = 'assigned'
COMPLETED = 'completed'

LIFECYCLE_STATES = (WAITING, ASSIGNED, COMPLETED)
TERMINAL_STATES = frozenset({COMPLETED})


@dataclass(frozen=True)
class QueueEntry:
    """One patient in the merged queue view.

    ``is_new`` is computed by the reducer and never takes part in
    equality, so two observations of the same row compare equal whether
    or not one of them was highlighted.
    """
    id: str
    display_name: str
    category: str
    lifecycle_state: str
    enqueued_at: datetime
    assigned_doctor: Optional[str] = None
    token_number: Optional[int] = None
    is_new: bool = field(default=False, compare=False)

    @property
    def bucket(self) -> int:
        return 1 if self.lifecycle_state in TERMINAL_STATES else 0

    def wait_minutes(self, now: Optional[datetime] = None) -> int:
        """Whole minutes elapsed since the patient joined, never negative."""
        now = now or timezone.now()
        return max(0, math.floor((now - self.enqueued_at).total_seconds() / 60))


@dataclass(frozen=True)
class Insert:
    entry: QueueEntry


@dataclass(frozen=True)
class Update:
    entry: QueueEntry


@dataclass(frozen=True)
class Delete:
    entry_id: str


ChangeEvent = Union[Insert, Update, Delete]


def sort_key(entry: QueueEntry) -> tuple:
    return (entry.bucket, entry.enqueued_at, entry.id)


def sort_entries(entries: Iterable[QueueEntry]) -> list[QueueEntry]:
    """Return ``entries`` in board order; the input is left untouched."""
    return sorted(entries, key=sort_key)


def reconcile(previous: Iterable[QueueEntry], incoming: Iterable[QueueEntry]) -> list[QueueEntry]:
    """Replace ``previous`` with a fresh snapshot and flag first sightings.

    The snapshot is the source of truth: nothing from ``previous`` is
    carried over except its id set, which decides ``is_new``. Duplicate
    ids inside ``incoming`` collapse to their last occurrence.
    """
    return mark_new({entry.id for entry in previous}, incoming)


def mark_new(existing_ids: AbstractSet[str], incoming: Iterable[QueueEntry]) -> list[QueueEntry]:
    """:func:`reconcile` for callers that only kept the ids of their last view."""
    merged: dict[str, QueueEntry] = {}
    for entry in incoming:
        merged.pop(entry.id, None)
        merged[entry.id] = replace(entry, is_new=entry.id not in existing_ids)
    return sort_entries(merged.values())


def apply_event(current: Iterable[QueueEntry], event: ChangeEvent) -> list[QueueEntry]:
    """Apply one push event to the view and return the new, sorted view.

    Delivery is at-least-once, so every branch is idempotent: a repeated
    insert replaces the earlier copy, an update for an unknown id is
    merged as an insert, and deleting an absent id changes nothing.
    """
    entries = list(current)
    if isinstance(event, Insert):
        fresh = replace(event.entry, is_new=True)
        entries = [fresh] + [e for e in entries if e.id != fresh.id]
    elif isinstance(event, Update):
        updated = replace(event.entry, is_new=False)
        for index, entry in enumerate(entries):
            if entry.id == updated.id:
                entries[index] = updated
                break
        else:
            return apply_event(entries, Insert(event.entry))
    elif isinstance(event, Delete):
        entries = [e for e in entries if e.id != event.entry_id]
    else:
        raise TypeError(f'unsupported change event: {event!r}')
    return sort_entries(entries)


class MalformedRecord(ValueError):
    """A queue record could not be turned into a :class:`QueueEntry`."""


def _parse_timestamp(value) -> Optional[datetime]:
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = parse_datetime(str(value))
        if parsed is None:
            raise MalformedRecord(f'invalid timestamp: {value!r}')
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def entry_from_record(record: Mapping) -> QueueEntry:
    """Build a :class:`QueueEntry` from an ``opd_queue`` row.

    Rows are the snake_case records produced by
    :class:`opd.serializers.QueueEntryRecordSerializer`, both for
    snapshots and for push payloads. The registration time wins over the
    join time as the moment the patient started waiting.
    """
    if not isinstance(record, Mapping):
        raise MalformedRecord('record must be a mapping')
    entry_id = record.get('id')
    if not entry_id:
        raise MalformedRecord('record has no id')
    status = record.get('status') or WAITING
    if status not in LIFECYCLE_STATES:
        raise MalformedRecord(f'unknown status: {status!r}')
    try:
        enqueued_at = _parse_timestamp(record.get('registration_time')) or _parse_timestamp(record.get('joined_at'))
    except ValueError as exc:
        raise MalformedRecord(str(exc)) from exc
    if enqueued_at is None:
        raise MalformedRecord('record has no joined_at')
    token = record.get('token_number')
    try:
        token_number = int(token) if token not in (None, '') else None
    except (TypeError, ValueError) as exc:
        raise MalformedRecord(f'invalid token_number: {token!r}') from exc
    return QueueEntry(
        id=str(entry_id),
        display_name=record.get('name') or '',
        category=record.get('department') or '',
        lifecycle_state=status,
        enqueued_at=enqueued_at,
        assigned_doctor=record.get('assigned_doctor') or None,
        token_number=token_number,
    )


def parse_change_event(payload) -> Optional[ChangeEvent]:
    """Turn a push payload into a :class:`ChangeEvent`.

    Payloads look like ``{"eventType": "INSERT"|"UPDATE"|"DELETE",
    "new": {...row}, "old": {"id": ...}}``. Anything malformed is logged
    and dropped (``None``) so a bad message never tears down the
    subscription that delivered it.
    """
    if not isinstance(payload, Mapping):
        log.warning('queue_event_dropped', reason='payload_not_mapping')
        return None
    event_type = str(payload.get('eventType') or '').upper()
    try:
        if event_type == 'INSERT':
            return Insert(entry_from_record(payload.get('new')))
        if event_type == 'UPDATE':
            return Update(entry_from_record(payload.get('new')))
        if event_type == 'DELETE':
            old = payload.get('old')
            entry_id = old.get('id') if isinstance(old, Mapping) else None
            if not entry_id:
                raise MalformedRecord('delete without old.id')
            return Delete(str(entry_id))
    except MalformedRecord as exc:
        log.warning('queue_event_dropped', event_type=event_type, reason=str(exc))
        return None
    log.warning('queue_event_dropped', event_type=event_type or None, reason='unknown_event_type')
    return None
