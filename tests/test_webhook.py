import base64
import hashlib
import hmac
import json

import pytest
from conftest import FakeMirror, woo_product
from fastapi.testclient import TestClient

from app.config import settings
from app.main_app import app
from app.projects.project_store import upsert_project
from app.routes import get_mirror_factory

client = TestClient(app)

SECRET = "whsec-test"


@pytest.fixture
def mirror(projects_file, monkeypatch):
    monkeypatch.setattr(settings, "WOO_WEBHOOK_SECRET", SECRET)
    upsert_project(7, {"name": "Store", "woocommerce_base_url": "https://shop.example"})
    m = FakeMirror([{"project_id": 7, "website_id": "5", "title": "Old"}])
    app.dependency_overrides[get_mirror_factory] = lambda: (lambda project: m)
    yield m
    app.dependency_overrides.clear()


def _post(payload, topic, secret=SECRET, project_id=7):
    body = json.dumps(payload).encode()
    sig = base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()
    return client.post(
        f"/webhooks/woo?project_id={project_id}",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-WC-Webhook-Topic": topic,
            "X-WC-Webhook-Signature": sig,
        },
    )


def test_ping_is_accepted_unsigned(mirror):
    response = client.post(
        "/webhooks/woo?project_id=7",
        content=b"webhook_id=12",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 200
    assert response.json()["ping"] is True


def test_bad_signature_is_rejected(mirror):
    response = _post(woo_product(5), "product.updated", secret="wrong")
    assert response.status_code == 401
    assert response.json()["reason"] == "invalid_signature"
    assert mirror.upsert_calls == 0


def test_product_updated_upserts(mirror):
    response = _post(woo_product(5, "Fresh title"), "product.updated")
    assert response.status_code == 200
    assert response.json()["upserted"] == 1
    assert [r["title"] for r in mirror.scope(7)] == ["Fresh title"]


def test_product_created_adds_row(mirror):
    response = _post(woo_product(6, "New"), "product.created")
    assert response.status_code == 200
    assert sorted(r["website_id"] for r in mirror.scope(7)) == ["5", "6"]


def test_product_deleted_removes_row(mirror):
    response = _post({"id": 5}, "product.deleted")
    assert response.status_code == 200
    assert response.json()["deleted"] == 1
    assert mirror.scope(7) == []


def test_unpublished_product_is_removed(mirror):
    response = _post(woo_product(5, status="draft"), "product.updated")
    assert response.status_code == 200
    assert mirror.scope(7) == []


def test_other_topics_are_ignored(mirror):
    response = _post({"id": 1}, "order.created")
    assert response.status_code == 200
    assert response.json()["ignored"] is True


def test_invalid_product_payload(mirror):
    response = _post({"name": "no id"}, "product.updated")
    assert response.status_code == 422
    assert response.json()["reason"] == "invalid_payload"


def test_unknown_project(mirror):
    response = _post(woo_product(5), "product.updated", project_id=404)
    assert response.status_code == 404
