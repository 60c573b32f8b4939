"""
Tests for the provisioning HTTP API.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import make_config
from provisioning.collaborators import failure
from provisioning.models import Operation, OperationStatus
from routers.provisioning_router import provisioning_router
from services.provisioning_service import ProvisioningService, set_provisioning_service

ADMIN = {"Authorization": "Bearer secret-token"}


@pytest.fixture
def service(registrar, certificate_authority, dns_zones, compute, load_balancers, store):
    service = ProvisioningService(
        make_config(admin_token="secret-token"),
        store=store,
        registrar=registrar,
        certificate_authority=certificate_authority,
        dns_zones=dns_zones,
        compute=compute,
        load_balancers=load_balancers,
    )
    set_provisioning_service(service)
    yield service
    set_provisioning_service(None)


@pytest.fixture
def client(service):
    app = FastAPI()
    app.include_router(provisioning_router)
    return TestClient(app)


def _activated(store):
    return store.create(
        Operation(
            domain_name="foo.test",
            external_operation_id="reg-1",
            status=OperationStatus.SSL_ACTIVATED,
            certificate_arn="arn:aws:acm:us-east-1:123456789012:certificate/abc",
        )
    )


def test_register_requires_admin_token(client, registrar):
    assert client.post("/domain/register/foo.test").status_code == 401
    assert (
        client.post(
            "/domain/register/foo.test", headers={"Authorization": "Bearer wrong"}
        ).status_code
        == 403
    )
    assert registrar.count("register_domain") == 0


def test_register_domain(client):
    response = client.post("/domain/register/Foo.Test", headers=ADMIN)

    assert response.status_code == 202
    body = response.json()
    assert body["domain_name"] == "foo.test"
    assert body["status"] == "PENDING"
    assert body["certificate_arn"] is None

    fetched = client.get(f"/operations/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["external_operation_id"] == body["external_operation_id"]


def test_duplicate_registration_conflicts(client):
    assert client.post("/domain/register/foo.test", headers=ADMIN).status_code == 202
    assert client.post("/domain/register/foo.test", headers=ADMIN).status_code == 409


def test_invalid_domain_is_bad_request(client):
    assert client.post("/domain/register/-nope-.test", headers=ADMIN).status_code == 400


def test_registrar_failure_is_bad_gateway(client, registrar):
    registrar.register_domain = lambda domain_name: failure("Domain not supported", "UnsupportedTLD")

    response = client.post("/domain/register/foo.test", headers=ADMIN)

    assert response.status_code == 502
    assert "Domain not supported" in response.json()["detail"]


def test_unknown_operation_is_not_found(client):
    assert client.get("/operations/missing").status_code == 404
    assert client.get("/domain/foo.test/operation").status_code == 404


def test_list_operations_and_domain_lookup(client, store):
    operation = _activated(store)

    listing = client.get("/operations").json()
    assert listing["count"] == 1
    assert listing["operations"][0]["id"] == operation.id

    by_domain = client.get("/domain/foo.test/operation")
    assert by_domain.json()["status"] == "SSL_ACTIVATED"


def test_availability(client, registrar):
    registrar.available.add("foo.com")
    registrar.prices["com"] = {"amount": 13.0, "currency": "USD"}

    response = client.get("/domain/available/foo")

    assert response.status_code == 200
    assert response.json() == {
        "name": "foo.com",
        "available": True,
        "price": {"amount": 13.0, "currency": "USD"},
        "suggestions": [],
    }


def test_create_zone(client):
    first = client.post("/domain/bar.test/zone", headers=ADMIN)
    second = client.post("/domain/bar.test/zone", headers=ADMIN)

    assert first.json()["created"] is True
    assert second.json() == {"id": first.json()["id"], "name": "bar.test", "created": False}


def test_attach_instance(client, store):
    operation = _activated(store)

    response = client.post("/domain/foo.test/instances/i-0abc", headers=ADMIN)

    assert response.status_code == 200
    body = response.json()
    assert body["operation_id"] == operation.id
    assert len(body["listener_arns"]) == 2
    assert store.get_by_id(operation.id).status == OperationStatus.COMPLETED


def test_attach_without_certificate_is_not_found(client, load_balancers):
    response = client.post("/domain/foo.test/instances/i-0abc", headers=ADMIN)

    assert response.status_code == 404
    assert load_balancers.calls == []


def test_attach_failure_reports_step(client, store, load_balancers):
    _activated(store)
    load_balancers.fail_on.add("create_target_group")

    response = client.post("/domain/foo.test/instances/i-0abc", headers=ADMIN)

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["step"] == "create target group"
    assert detail["created_resources"] == []


def test_status(client, store):
    _activated(store)

    body = client.get("/provisioning/status").json()

    assert body["operations"]["SSL_ACTIVATED"] == 1
    assert body["dns_provider"] == "route53"
    assert body["poller"]["running"] is False


def test_health(client, service, monkeypatch):
    assert client.get("/health").status_code == 503

    monkeypatch.setattr(service.poller, "get_status", lambda: {"running": True})
    assert client.get("/health").json() == {"status": "healthy"}


def test_service_missing_is_unavailable(client):
    set_provisioning_service(None)

    assert client.get("/operations").status_code == 503
    assert client.get("/health").status_code == 503
