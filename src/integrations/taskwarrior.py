"""
Taskwarrior Integration

Key/value task store addressed by UUID. The real store is the
TaskChampion replica that backs Taskwarrior (taskchampion-py); an
in-memory dict store with the same contract serves tests.

Architecture:
- Every task is a flat map of string properties (status, description,
  due, wait, scheduled, created, end, priority, project, tag_<name>,
  annotation_<epoch>)
- Dates are stored as epoch seconds
- Changes are collected as Operations and committed as one group
"""

import uuid
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import taskchampion

from task_parser import Status

TAG_PREFIX = 'tag_'
ANNOTATION_PREFIX = 'annotation_'

DB_FILE_NAME = 'taskchampion.sqlite3'

# Store status vocabulary <-> task line status
STATUS_TO_STORE = {
    Status.PENDING: 'pending',
    Status.COMPLETE: 'completed',
    Status.CANCELED: 'deleted',
}

STATUS_FROM_STORE = {
    'pending': Status.PENDING,
    'completed': Status.COMPLETE,
    'deleted': Status.CANCELED,
    'recurring': Status.PENDING,
}

TASKCHAMPION_STATUS = {
    'pending': taskchampion.Status.Pending,
    'completed': taskchampion.Status.Completed,
    'deleted': taskchampion.Status.Deleted,
}


def status_to_store(status: Status) -> str:
    return STATUS_TO_STORE[status]


def status_from_store(value: Optional[str]) -> Status:
    """Map any store status onto the tri-state (unknown values are pending)"""
    return STATUS_FROM_STORE.get((value or '').lower(), Status.PENDING)


class StoreError(Exception):
    """Store unreachable, unreadable, or a commit was rejected"""


@dataclass
class ExternalRecord:
    """One task as held by the store"""
    identifier: uuid.UUID
    data: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> Optional[str]:
        return self.data.get(name)

    @property
    def status(self) -> Status:
        return status_from_store(self.data.get('status'))

    @property
    def description(self) -> str:
        return self.data.get('description', '')

    @property
    def tags(self) -> Set[str]:
        return {key[len(TAG_PREFIX):] for key in self.data if key.startswith(TAG_PREFIX)}

    @property
    def annotations(self) -> Dict[str, str]:
        return {key: value for key, value in self.data.items() if key.startswith(ANNOTATION_PREFIX)}


@dataclass
class Operation:
    """
    A pending change to one record

    `name=None` marks the creation of the record itself; `value=None`
    removes the property.
    """
    identifier: uuid.UUID
    name: Optional[str] = None
    value: Optional[str] = None

    @property
    def is_create(self) -> bool:
        return self.name is None


class Operations(list):
    """Ordered group of operations committed together"""


class TaskStore:
    """
    Base store: operation bookkeeping shared by all backends

    Subclasses implement `get`, `all_identifiers` and `commit`.
    """

    def __init__(self):
        self.logger = logging.getLogger("TaskSync.Taskwarrior")

    def new_identifier(self) -> uuid.UUID:
        return uuid.uuid4()

    def get(self, identifier: uuid.UUID) -> Optional[ExternalRecord]:
        raise NotImplementedError

    def all_identifiers(self) -> List[uuid.UUID]:
        raise NotImplementedError

    def create(self, identifier: uuid.UUID, ops: Operations) -> ExternalRecord:
        """Queue creation of an empty record and return its local view"""
        ops.append(Operation(identifier))
        return ExternalRecord(identifier)

    def set_field(self, record: ExternalRecord, name: str, value: Optional[str], ops: Operations) -> None:
        """Queue a property change and apply it to the local view"""
        ops.append(Operation(record.identifier, name, value))
        if value is None:
            record.data.pop(name, None)
        else:
            record.data[name] = value

    def commit(self, ops: Operations) -> None:
        """
        Apply a group of operations, all or nothing

        Raises:
            StoreError: if any operation targets a record that does not exist
                or cannot be created, or the store cannot be written
        """
        raise NotImplementedError


class MemoryTaskStore(TaskStore):
    """Store held in a plain dict (uuid string -> properties); used by tests"""

    def __init__(self, tasks: Optional[Dict[str, Dict[str, str]]] = None):
        super().__init__()
        self._tasks = tasks if tasks is not None else {}

    def get(self, identifier: uuid.UUID) -> Optional[ExternalRecord]:
        data = self._tasks.get(str(identifier))
        if data is None:
            return None
        return ExternalRecord(identifier, dict(data))

    def all_identifiers(self) -> List[uuid.UUID]:
        return [uuid.UUID(key) for key in self._tasks]

    def commit(self, ops: Operations) -> None:
        if not ops:
            return

        tasks = {key: dict(value) for key, value in self._tasks.items()}
        for op in ops:
            key = str(op.identifier)
            if op.is_create:
                if key in tasks:
                    raise StoreError(f"Task {key} already exists")
                tasks[key] = {}
                continue
            if key not in tasks:
                raise StoreError(f"Task {key} does not exist")
            if op.value is None:
                tasks[key].pop(op.name, None)
            else:
                tasks[key][op.name] = op.value

        self._tasks.clear()
        self._tasks.update(tasks)
        self.logger.debug(f"Committed {len(ops)} operations")


class TaskChampionStore(TaskStore):
    """
    Taskwarrior's own task database, through a TaskChampion replica

    Layout: <task_path>/taskchampion.sqlite3, shared with the `task` command.
    Queued operations are translated into one TaskChampion operation group,
    so a commit lands completely or not at all.
    """

    def __init__(self, task_path: Optional[Path] = None, create_if_missing: bool = False, replica=None):
        """
        Args:
            task_path: Taskwarrior data directory (usually ~/.task)
            create_if_missing: Create the directory and database if absent
            replica: Already opened replica; `task_path` is ignored when given
        """
        super().__init__()
        self.task_path = Path(task_path).expanduser() if task_path else None

        if replica is not None:
            self._replica = replica
            return

        if self.task_path is None:
            raise StoreError("No task directory given")

        if not self.task_path.is_dir():
            if not create_if_missing:
                raise StoreError(f"Task directory not found: {self.task_path}")
            self.logger.info(f"Creating task directory: {self.task_path}")
            try:
                self.task_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(f"Cannot create task directory {self.task_path}: {e}") from e

        try:
            self._replica = taskchampion.Replica.new_on_disk(str(self.task_path), create_if_missing)
        except (RuntimeError, OSError, ValueError) as e:
            raise StoreError(f"Cannot open task database in {self.task_path}: {e}") from e

    @classmethod
    def in_memory(cls) -> 'TaskChampionStore':
        return cls(replica=taskchampion.Replica.new_in_memory())

    def _get_task(self, key: str):
        try:
            return self._replica.get_task(key)
        except (RuntimeError, ValueError) as e:
            raise StoreError(f"Error reading task {key}: {e}") from e

    def get(self, identifier: uuid.UUID) -> Optional[ExternalRecord]:
        task = self._get_task(str(identifier))
        if task is None:
            return None
        return ExternalRecord(identifier, dict(task.get_taskmap()))

    def all_identifiers(self) -> List[uuid.UUID]:
        try:
            return [uuid.UUID(key) for key in self._replica.all_task_uuids()]
        except (RuntimeError, ValueError) as e:
            raise StoreError(f"Error listing tasks: {e}") from e

    def commit(self, ops: Operations) -> None:
        if not ops:
            return

        tc_ops = taskchampion.Operations()
        tasks = {}
        try:
            for op in ops:
                key = str(op.identifier)
                if op.is_create:
                    if key in tasks or self._get_task(key) is not None:
                        raise StoreError(f"Task {key} already exists")
                    tasks[key] = self._replica.create_task(key, tc_ops)
                    continue

                task = tasks.get(key)
                if task is None:
                    task = self._get_task(key)
                    if task is None:
                        raise StoreError(f"Task {key} does not exist")
                    tasks[key] = task

                if op.name == 'status' and op.value in TASKCHAMPION_STATUS:
                    # set_status keeps the working set in step
                    task.set_status(TASKCHAMPION_STATUS[op.value], tc_ops)
                else:
                    task.set_value(op.name, op.value, tc_ops)

            self._replica.commit_operations(tc_ops)
        except (RuntimeError, ValueError) as e:
            raise StoreError(f"Failed to commit operations: {e}") from e

        self.logger.debug(f"Committed {len(ops)} operations")
