"""
Reconciliation between task lines and the task store

Compares a parsed TaskRecord with its store record field by field and
brings one side in line with the other:

- md-to-tc: the markdown is authoritative; the store is created or updated
- tc-to-md: the store is authoritative; a corrected TaskRecord is returned
  for the caller to render into the file

Every field comparison goes through the FIELDS table, so both directions
agree on what "different" means.
"""

import logging
import urllib.parse
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone, tzinfo
from typing import Any, Callable, List, NamedTuple, Optional, Set

from task_parser import Priority, Status, TaskRecord, parse_tags, render
from integrations.taskwarrior import (
    ANNOTATION_PREFIX,
    TAG_PREFIX,
    ExternalRecord,
    Operations,
    TaskStore,
    status_to_store,
)

logger = logging.getLogger("TaskSync.Reconcile")

NEXT_TAG = 'next'


class Direction(Enum):
    """Which side wins for one invocation"""
    MD_TO_TC = 'md-to-tc'
    TC_TO_MD = 'tc-to-md'


# ==================== Value conversion ====================

def date_to_timestamp(value: Optional[date], tz: tzinfo) -> Optional[str]:
    """Local midnight of `value` in `tz`, as epoch seconds"""
    if value is None:
        return None
    return str(int(datetime.combine(value, time.min, tzinfo=tz).timestamp()))


def timestamp_to_date(value: Optional[str], tz: tzinfo) -> Optional[date]:
    """Calendar date of an epoch-seconds store value, seen from `tz`"""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz).date()
    except (ValueError, OverflowError, OSError):
        logger.warning(f"Invalid timestamp in store: '{value}'")
        return None


def priority_from_store(code: Optional[str], tags: Set[str]) -> Priority:
    if code == 'H':
        return Priority.HIGHEST if NEXT_TAG in tags else Priority.HIGH
    if code == 'M':
        return Priority.MEDIUM
    if code == 'L':
        return Priority.LOW
    return Priority.NORMAL


def effective_tags(record: TaskRecord) -> Set[str]:
    """Tags the store should carry: the line's tags plus `next` for highest priority"""
    tags = set(record.tags)
    if record.priority == Priority.HIGHEST:
        tags.add(NEXT_TAG)
    return tags


# ==================== Field comparison ====================

def values_equal(text_value: Any, store_value: Any) -> bool:
    return text_value == store_value


def dates_equal(text_value: Optional[date], store_value: Optional[date]) -> bool:
    if text_value is None or store_value is None:
        return text_value is None and store_value is None
    return text_value == store_value


def tags_equal(text_tags: Set[str], store_tags: Set[str]) -> bool:
    if len(text_tags) != len(store_tags):
        return False
    return set(text_tags) == set(store_tags)


def priorities_equal(text_priority: Priority, store_priority: Priority, text_tags: Set[str] = frozenset()) -> bool:
    """
    Highest must match Highest; every other level compares by store code

    The store reads as Highest whenever it carries `next`. That only
    disagrees with a lower line priority when the line does not carry
    `#next` itself.
    """
    if text_priority == Priority.HIGHEST:
        return store_priority == Priority.HIGHEST
    if store_priority == Priority.HIGHEST and NEXT_TAG not in text_tags:
        return False
    return text_priority.code == store_priority.code


def _ignoring_record(equal: Callable[[Any, Any], bool]) -> Callable[[Any, Any, TaskRecord], bool]:
    return lambda text_value, store_value, record: equal(text_value, store_value)


def _write_value(store_name: str, encode: Callable[[TaskRecord, tzinfo], Optional[str]]):
    def write(store: TaskStore, external: ExternalRecord, record: TaskRecord, tz: tzinfo, ops: Operations):
        value = encode(record, tz)
        if value != external.get(store_name):
            store.set_field(external, store_name, value, ops)
    return write


def _write_tags(store: TaskStore, external: ExternalRecord, record: TaskRecord, tz: tzinfo, ops: Operations):
    wanted = effective_tags(record)
    current = external.tags
    for tag in sorted(current - wanted):
        store.set_field(external, f"{TAG_PREFIX}{tag}", None, ops)
    for tag in sorted(wanted - current):
        store.set_field(external, f"{TAG_PREFIX}{tag}", '', ops)


def _date_field(name: str, attribute: str, store_name: str) -> 'FieldSpec':
    return FieldSpec(
        name,
        lambda record: getattr(record, attribute),
        lambda external, tz: timestamp_to_date(external.get(store_name), tz),
        _ignoring_record(dates_equal),
        _write_value(store_name, lambda record, tz: date_to_timestamp(getattr(record, attribute), tz)),
    )


class FieldSpec(NamedTuple):
    """How one field is read from each side, compared, and written to the store"""
    name: str
    from_text: Callable[[TaskRecord], Any]
    from_store: Callable[[ExternalRecord, tzinfo], Any]
    equal: Callable[[Any, Any, TaskRecord], bool]
    write: Callable[[TaskStore, ExternalRecord, TaskRecord, tzinfo, Operations], None]


FIELDS = (
    FieldSpec(
        'status',
        lambda record: record.status,
        lambda external, tz: external.status,
        _ignoring_record(values_equal),
        _write_value('status', lambda record, tz: status_to_store(record.status)),
    ),
    FieldSpec(
        'description',
        lambda record: record.description,
        lambda external, tz: external.description,
        _ignoring_record(values_equal),
        _write_value('description', lambda record, tz: record.description),
    ),
    _date_field('due', 'due', 'due'),
    _date_field('scheduled', 'scheduled', 'scheduled'),
    _date_field('start', 'start', 'wait'),
    _date_field('created', 'created', 'created'),
    _date_field('end', 'end_date', 'end'),
    FieldSpec(
        'tags',
        effective_tags,
        lambda external, tz: external.tags,
        _ignoring_record(tags_equal),
        _write_tags,
    ),
    FieldSpec(
        'priority',
        lambda record: record.priority,
        lambda external, tz: priority_from_store(external.get('priority'), external.tags),
        lambda text_value, store_value, record: priorities_equal(text_value, store_value, record.tags),
        _write_value('priority', lambda record, tz: record.priority.code),
    ),
    FieldSpec(
        'project',
        lambda record: record.project,
        lambda external, tz: external.get('project'),
        _ignoring_record(values_equal),
        _write_value('project', lambda record, tz: record.project),
    ),
)


@dataclass
class FieldDiff:
    """One field that disagrees between the line and the store"""
    field: str
    text_value: Any
    store_value: Any

    def __str__(self) -> str:
        return f"{self.field.capitalize()}: {self.text_value!r} <> {self.store_value!r}"


def fields_equal(record: TaskRecord, external: ExternalRecord, tz: tzinfo) -> List[FieldDiff]:
    """
    Compare a task line with its store record

    Returns:
        One FieldDiff per differing field; empty when both sides agree
    """
    diffs = []
    for spec in FIELDS:
        text_value = spec.from_text(record)
        store_value = spec.from_store(external, tz)
        if not spec.equal(text_value, store_value, record):
            diffs.append(FieldDiff(spec.name, text_value, store_value))
    return diffs


def record_from_store(external: ExternalRecord, tz: tzinfo) -> TaskRecord:
    """
    Build the TaskRecord the store describes

    Store tags that the description does not mention are appended to it
    as `#tag`, since a task line only carries tags inside its description;
    the record's tags are then exactly the description's tags. The `next`
    tag is dropped when it only encodes highest priority, that is when the
    description does not mention `#next` itself.
    """
    tags = external.tags
    priority = priority_from_store(external.get('priority'), tags)
    if priority == Priority.HIGHEST and NEXT_TAG not in parse_tags(external.description):
        tags.discard(NEXT_TAG)

    status = external.status
    end = timestamp_to_date(external.get('end'), tz)

    record = TaskRecord(
        identifier=external.identifier,
        status=status,
        description=external.description,
        tags=tags,
        due=timestamp_to_date(external.get('due'), tz),
        scheduled=timestamp_to_date(external.get('scheduled'), tz),
        start=timestamp_to_date(external.get('wait'), tz),
        created=timestamp_to_date(external.get('created'), tz),
        done=end if status == Status.COMPLETE else None,
        canceled=end if status == Status.CANCELED else None,
        priority=priority,
        project=external.get('project'),
    )

    missing = sorted(tags - parse_tags(record.description))
    if missing:
        record.description = ' '.join([record.description] + [f"#{tag}" for tag in missing]).strip()
    record.tags = parse_tags(record.description)

    return record


# ==================== Outcomes ====================

class OutcomeKind(Enum):
    NO_CHANGE = 'no_change'
    STORE_UPDATED = 'store_updated'
    TEXT_UPDATED = 'text_updated'
    STORE_CREATED = 'store_created'
    RECORD_MISSING = 'record_missing'


@dataclass
class Outcome:
    """Result of reconciling one task line"""
    kind: OutcomeKind
    record: Optional[TaskRecord] = None
    identifier: Any = None
    diffs: List[FieldDiff] = field(default_factory=list)

    @property
    def changes_text(self) -> bool:
        """True when the originating line must be rewritten"""
        return self.kind in (OutcomeKind.TEXT_UPDATED, OutcomeKind.STORE_CREATED)


# ==================== Reconciler ====================

class Reconciler:
    """
    Applies the reconciliation policy for one configured time zone

    Args:
        tz: Zone in which calendar dates become store timestamps
    """

    def __init__(self, tz: tzinfo):
        self.tz = tz

    def reconcile(
        self,
        record: TaskRecord,
        store: TaskStore,
        direction: Direction,
        source_file: Optional[Path] = None,
        vault_path: Optional[Path] = None
    ) -> Outcome:
        if direction == Direction.MD_TO_TC:
            return self.overwrite_store(record, store, source_file, vault_path)
        return self.overwrite_text(record, store)

    def overwrite_store(
        self,
        record: TaskRecord,
        store: TaskStore,
        source_file: Optional[Path] = None,
        vault_path: Optional[Path] = None
    ) -> Outcome:
        """
        Make the store match the task line

        A line without identifier gets a new store record and the record
        is given the new identifier. Raises StoreError if the commit fails.
        """
        if record.identifier is None:
            return self._create(record, store, source_file, vault_path)

        external = store.get(record.identifier)
        if external is None:
            logger.warning(f"⚠️  Task {record.identifier} not found in store, skipping")
            return Outcome(OutcomeKind.RECORD_MISSING, identifier=record.identifier)

        diffs = fields_equal(record, external, self.tz)
        if not diffs:
            logger.debug(f"No changes: {record.description[:50]}")
            return Outcome(OutcomeKind.NO_CHANGE, identifier=record.identifier)

        logger.info(f"Updating store from: {record.description[:50]}")
        specs = {spec.name: spec for spec in FIELDS}
        ops = Operations()
        for diff in diffs:
            logger.info(f"      {diff}")
            specs[diff.field].write(store, external, record, self.tz, ops)

        store.commit(ops)
        return Outcome(OutcomeKind.STORE_UPDATED, identifier=record.identifier, diffs=diffs)

    def overwrite_text(self, record: TaskRecord, store: TaskStore) -> Outcome:
        """Return the store's version of the line if it differs"""
        if record.identifier is None:
            return Outcome(OutcomeKind.NO_CHANGE)

        external = store.get(record.identifier)
        if external is None:
            logger.warning(f"⚠️  Task {record.identifier} not found in store, leaving line as is")
            return Outcome(OutcomeKind.RECORD_MISSING, identifier=record.identifier)

        diffs = fields_equal(record, external, self.tz)
        if not diffs:
            return Outcome(OutcomeKind.NO_CHANGE, identifier=record.identifier)

        corrected = record_from_store(external, self.tz)
        if not any(diff.field == 'priority' for diff in diffs):
            # `#next` with a lower glyph also reads as highest from the store
            corrected.priority = record.priority
        if render(corrected) == render(record):
            return Outcome(OutcomeKind.NO_CHANGE, identifier=record.identifier, diffs=diffs)

        logger.info(f"Updating line from store: {record.description[:50]}")
        for diff in diffs:
            logger.info(f"      {diff}")
        return Outcome(OutcomeKind.TEXT_UPDATED, record=corrected, identifier=record.identifier, diffs=diffs)

    def _create(
        self,
        record: TaskRecord,
        store: TaskStore,
        source_file: Optional[Path],
        vault_path: Optional[Path]
    ) -> Outcome:
        identifier = store.new_identifier()
        ops = Operations()
        external = store.create(identifier, ops)

        for spec in FIELDS:
            spec.write(store, external, record, self.tz, ops)

        link = obsidian_link(source_file, vault_path)
        if link:
            stamp = int(datetime.now(timezone.utc).timestamp())
            store.set_field(external, f"{ANNOTATION_PREFIX}{stamp}", link, ops)

        store.commit(ops)
        record.identifier = identifier

        logger.info(f"✅ Created task {identifier}: {record.description[:50]}")
        return Outcome(OutcomeKind.STORE_CREATED, record=record, identifier=identifier)


def obsidian_link(source_file: Optional[Path], vault_path: Optional[Path]) -> Optional[str]:
    """obsidian:// URI that opens the note a task came from"""
    if not source_file or not vault_path:
        return None
    vault_name = Path(vault_path).name
    file_name = Path(source_file).stem
    if not vault_name or not file_name:
        return None
    return (
        f"obsidian://open?vault={urllib.parse.quote(vault_name)}"
        f"&file={urllib.parse.quote(file_name)}"
    )
