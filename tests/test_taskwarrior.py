"""
Tests for the Taskwarrior store integration

Run with: pytest tests/
"""

import uuid

import pytest

from task_parser import Status
from integrations.taskwarrior import (
    STATUS_FROM_STORE,
    STATUS_TO_STORE,
    DB_FILE_NAME,
    ExternalRecord,
    MemoryTaskStore,
    Operations,
    StoreError,
    TaskChampionStore,
    status_from_store,
    status_to_store,
)


class TestStatusMapping:
    """Test suite for the status vocabulary tables"""

    def test_every_status_maps_to_store(self):
        assert set(STATUS_TO_STORE) == set(Status)

    @pytest.mark.parametrize('status', list(Status))
    def test_round_trip(self, status):
        assert status_from_store(status_to_store(status)) == status

    def test_every_store_status_maps_back(self):
        assert set(STATUS_FROM_STORE.values()) <= set(Status)

    def test_recurring_is_pending(self):
        assert status_from_store('recurring') == Status.PENDING

    def test_unknown_and_missing_are_pending(self):
        assert status_from_store('waiting') == Status.PENDING
        assert status_from_store(None) == Status.PENDING


class TestExternalRecord:
    """Test suite for store record accessors"""

    def test_tags_and_annotations(self):
        record = ExternalRecord(uuid.uuid4(), {
            'description': 'Test',
            'tag_work': '',
            'tag_next': '',
            'annotation_1717000000': 'obsidian://open?vault=v&file=f',
        })
        assert record.tags == {'work', 'next'}
        assert record.annotations == {'annotation_1717000000': 'obsidian://open?vault=v&file=f'}
        assert record.description == 'Test'
        assert record.status == Status.PENDING


class TestMemoryTaskStore:
    """Test suite for operation bookkeeping"""

    def test_create_and_commit(self):
        store = MemoryTaskStore()
        identifier = store.new_identifier()
        ops = Operations()
        record = store.create(identifier, ops)
        store.set_field(record, 'description', 'New task', ops)
        store.set_field(record, 'status', 'pending', ops)

        assert store.get(identifier) is None
        store.commit(ops)

        stored = store.get(identifier)
        assert stored.description == 'New task'
        assert stored.status == Status.PENDING
        assert store.all_identifiers() == [identifier]

    def test_set_none_removes_property(self):
        identifier = uuid.uuid4()
        store = MemoryTaskStore({str(identifier): {'description': 'x', 'project': 'Home'}})
        record = store.get(identifier)
        ops = Operations()
        store.set_field(record, 'project', None, ops)
        store.commit(ops)
        assert store.get(identifier).get('project') is None

    def test_commit_is_all_or_nothing(self):
        identifier = uuid.uuid4()
        store = MemoryTaskStore({str(identifier): {'description': 'before'}})
        record = store.get(identifier)
        ops = Operations()
        store.set_field(record, 'description', 'after', ops)
        store.set_field(ExternalRecord(uuid.uuid4()), 'description', 'ghost', ops)

        with pytest.raises(StoreError):
            store.commit(ops)

        assert store.get(identifier).description == 'before'
        assert len(store.all_identifiers()) == 1

    def test_duplicate_create_rejected(self):
        identifier = uuid.uuid4()
        store = MemoryTaskStore({str(identifier): {}})
        ops = Operations()
        store.create(identifier, ops)
        with pytest.raises(StoreError):
            store.commit(ops)

    def test_get_returns_a_copy(self):
        identifier = uuid.uuid4()
        store = MemoryTaskStore({str(identifier): {'description': 'x'}})
        store.get(identifier).data['description'] = 'changed'
        assert store.get(identifier).description == 'x'


class TestTaskChampionStore:
    """Test suite for the Taskwarrior replica store"""

    def test_missing_directory(self, tmp_path):
        with pytest.raises(StoreError):
            TaskChampionStore(tmp_path / 'taskData')

    def test_create_if_missing(self, tmp_path):
        store = TaskChampionStore(tmp_path / 'taskData', create_if_missing=True)
        assert (tmp_path / 'taskData').is_dir()
        assert store.all_identifiers() == []

    def test_persists_between_opens(self, tmp_path):
        store = TaskChampionStore(tmp_path, create_if_missing=True)
        identifier = store.new_identifier()
        ops = Operations()
        record = store.create(identifier, ops)
        store.set_field(record, 'status', 'pending', ops)
        store.set_field(record, 'description', 'Café ☕', ops)
        store.set_field(record, 'tag_home', '', ops)
        store.commit(ops)

        assert (tmp_path / DB_FILE_NAME).exists()

        reopened = TaskChampionStore(tmp_path)
        stored = reopened.get(identifier)
        assert stored.description == 'Café ☕'
        assert stored.status == Status.PENDING
        assert stored.tags == {'home'}
        assert reopened.all_identifiers() == [identifier]

    def test_status_and_removal(self):
        store = TaskChampionStore.in_memory()
        identifier = store.new_identifier()
        ops = Operations()
        record = store.create(identifier, ops)
        store.set_field(record, 'status', 'pending', ops)
        store.set_field(record, 'project', 'Home', ops)
        store.commit(ops)

        record = store.get(identifier)
        ops = Operations()
        store.set_field(record, 'status', 'completed', ops)
        store.set_field(record, 'project', None, ops)
        store.commit(ops)

        stored = store.get(identifier)
        assert stored.status == Status.COMPLETE
        assert stored.get('project') is None

    def test_commit_is_all_or_nothing(self):
        store = TaskChampionStore.in_memory()
        ops = Operations()
        record = store.create(uuid.uuid4(), ops)
        store.set_field(record, 'description', 'first', ops)
        store.set_field(ExternalRecord(uuid.uuid4()), 'description', 'ghost', ops)

        with pytest.raises(StoreError):
            store.commit(ops)

        assert store.all_identifiers() == []

    def test_duplicate_create_rejected(self):
        store = TaskChampionStore.in_memory()
        identifier = store.new_identifier()
        ops = Operations()
        record = store.create(identifier, ops)
        store.set_field(record, 'description', 'original', ops)
        store.commit(ops)

        ops = Operations()
        store.create(identifier, ops)
        with pytest.raises(StoreError):
            store.commit(ops)
        assert store.get(identifier).description == 'original'

    def test_unknown_task(self):
        assert TaskChampionStore.in_memory().get(uuid.uuid4()) is None
