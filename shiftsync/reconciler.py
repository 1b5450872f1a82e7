from __future__ import annotations

from typing import Iterable

from shiftsync.models import ExternalEvent, ReconcilePlan, SyncedRecord


def dedupe_last_wins(events: Iterable[ExternalEvent]) -> list[ExternalEvent]:
    """Collapse repeated external ids, keeping the last event at the first position."""
    by_id: dict[str, ExternalEvent] = {}
    for event in events:
        by_id[event.external_id] = event
    return list(by_id.values())


def record_matches(record: SyncedRecord, event: ExternalEvent, color: str | None = None) -> bool:
    if color is not None and record.color != color:
        return False
    return (
        record.date == event.date
        and record.start_time == event.start_time
        and record.end_time == event.end_time
        and record.all_day == event.all_day
        and record.title == event.title
        and (record.description or None) == (event.description or None)
    )


def build_plan(
    existing: Iterable[SyncedRecord],
    events: Iterable[ExternalEvent],
    color: str | None = None,
) -> ReconcilePlan:
    """Diff one feed's synced records against its freshly parsed events.

    The external id is the join key. A matched record that differs in any field
    is rewritten in full from the remote event; identical ones are left alone.
    Records whose id is absent from the parsed set are deleted.
    """
    existing_by_id: dict[str, SyncedRecord] = {}
    for record in existing:
        if not record.synced_from_external or not record.external_id:
            continue
        existing_by_id[record.external_id] = record

    plan = ReconcilePlan()
    seen_ids: set[str] = set()
    for event in dedupe_last_wins(events):
        seen_ids.add(event.external_id)
        current = existing_by_id.get(event.external_id)
        if current is None:
            plan.to_insert.append(event)
        elif record_matches(current, event, color):
            plan.unchanged.append(current)
        else:
            plan.to_update.append((current, event))

    plan.to_delete = [record for external_id, record in existing_by_id.items() if external_id not in seen_ids]
    return plan
