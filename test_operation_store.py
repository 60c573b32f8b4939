"""
Tests for the operation stores.
"""

import dataclasses
import json
from datetime import timedelta

import pytest

from provisioning.errors import NotFoundError, OperationConflictError
from provisioning.models import Operation, OperationStatus, utcnow
from provisioning.operation_store import InMemoryOperationStore, JsonFileOperationStore


def test_create_and_get_returns_copies(store):
    """Mutating a returned record does not change the stored one."""
    created = store.create(Operation(domain_name="foo.test", external_operation_id="reg-1"))

    fetched = store.get_by_id(created.id)
    fetched.status = OperationStatus.COMPLETED

    assert store.get_by_id(created.id).status == OperationStatus.PENDING


def test_get_by_id_unknown_raises(store):
    with pytest.raises(NotFoundError):
        store.get_by_id("missing")


def test_update_unknown_raises(store):
    with pytest.raises(NotFoundError):
        store.update(Operation(domain_name="foo.test", external_operation_id="reg-1"))


def test_update_bumps_updated_at(store):
    created = store.create(Operation(domain_name="foo.test", external_operation_id="reg-1"))

    updated = store.update(
        dataclasses.replace(created, status=OperationStatus.REGISTRATION_IN_PROGRESS)
    )

    assert updated.status == OperationStatus.REGISTRATION_IN_PROGRESS
    assert updated.updated_at >= created.updated_at


def test_second_pending_operation_for_domain_is_rejected(store):
    store.create(Operation(domain_name="foo.test", external_operation_id="reg-1"))

    with pytest.raises(OperationConflictError):
        store.create(Operation(domain_name="foo.test", external_operation_id="reg-2"))


def test_new_operation_allowed_once_previous_is_terminal(store):
    first = store.create(Operation(domain_name="foo.test", external_operation_id="reg-1"))
    store.update(dataclasses.replace(first, status=OperationStatus.REGISTRATION_FAILED))

    second = store.create(Operation(domain_name="foo.test", external_operation_id="reg-2"))

    assert second.id != first.id
    assert len(store.list_all()) == 2


def test_get_by_domain_name_returns_most_recent(store):
    now = utcnow()
    older = Operation(
        domain_name="foo.test",
        external_operation_id="reg-1",
        status=OperationStatus.REGISTRATION_FAILED,
        created_at=now - timedelta(hours=1),
    )
    newer = Operation(domain_name="foo.test", external_operation_id="reg-2", created_at=now)
    store.create(older)
    store.create(newer)

    assert store.get_by_domain_name("foo.test").id == newer.id


def test_get_by_domain_name_with_status_filter(store):
    now = utcnow()
    activated = Operation(
        domain_name="foo.test",
        external_operation_id="reg-1",
        status=OperationStatus.SSL_ACTIVATED,
        certificate_arn="arn:cert",
        created_at=now - timedelta(hours=1),
    )
    store.create(activated)
    store.create(Operation(domain_name="foo.test", external_operation_id="reg-2", created_at=now))

    found = store.get_by_domain_name(
        "foo.test", statuses=[OperationStatus.SSL_ACTIVATED, OperationStatus.COMPLETED]
    )

    assert found.id == activated.id


def test_get_by_domain_name_without_match_raises(store):
    store.create(Operation(domain_name="foo.test", external_operation_id="reg-1"))

    with pytest.raises(NotFoundError):
        store.get_by_domain_name("bar.test")
    with pytest.raises(NotFoundError):
        store.get_by_domain_name("foo.test", statuses=[OperationStatus.SSL_ACTIVATED])


def test_list_pending_excludes_terminal(store):
    pending = store.create(Operation(domain_name="foo.test", external_operation_id="reg-1"))
    store.create(
        Operation(
            domain_name="bar.test",
            external_operation_id="reg-2",
            status=OperationStatus.SSL_ACTIVATION_FAILED,
        )
    )

    assert [op.id for op in store.list_pending()] == [pending.id]


def test_json_store_survives_reload(tmp_path):
    path = tmp_path / "state" / "operations.json"
    store = JsonFileOperationStore(str(path))
    created = store.create(Operation(domain_name="foo.test", external_operation_id="reg-1"))
    store.update(
        dataclasses.replace(
            created,
            status=OperationStatus.REGISTRATION_SUCCESSFUL,
        )
    )

    reloaded = JsonFileOperationStore(str(path))
    operation = reloaded.get_by_id(created.id)

    assert operation.status == OperationStatus.REGISTRATION_SUCCESSFUL
    assert operation.domain_name == "foo.test"
    assert operation.created_at == created.created_at
    assert json.loads(path.read_text())["operations"][0]["id"] == created.id


def test_json_store_enforces_conflicts_after_reload(tmp_path):
    path = str(tmp_path / "operations.json")
    JsonFileOperationStore(path).create(
        Operation(domain_name="foo.test", external_operation_id="reg-1")
    )

    with pytest.raises(OperationConflictError):
        JsonFileOperationStore(path).create(
            Operation(domain_name="foo.test", external_operation_id="reg-2")
        )


def test_in_memory_store_starts_empty():
    assert InMemoryOperationStore().list_all() == []
