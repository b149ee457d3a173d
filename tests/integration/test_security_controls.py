from __future__ import annotations

import json
import logging

from sqlalchemy import func, select

import cvforge.main as main_module
from cvforge.database import AsyncSessionLocal
from cvforge.models import CVDocument

USER = {"X-Authenticated-User": "user-ada"}


def cv_payload(title: str = "Security CV") -> dict:
    return {
        "title": title,
        "personalInfo": {
            "fullName": "Ada Yilmaz",
            "title": "Engineer",
            "email": "ada@example.com",
            "phone": "+90 555 123 4567",
        },
    }


async def _cv_count() -> int:
    async with AsyncSessionLocal() as session:
        return int(await session.scalar(select(func.count(CVDocument.id))) or 0)


async def test_operator_key_is_rejected_and_logged_without_payload(client, caplog) -> None:
    payload = cv_payload()
    payload["personalInfo"]["email"] = {"$where": "sleep(5000) || true"}

    with caplog.at_level(logging.WARNING, logger="cvforge.security"):
        response = await client.post("/api/v1/cvs", json=payload, headers=USER)

    assert response.status_code == 400
    error = response.json()["detail"]["errors"][0]
    assert error["type"] == "value_error.injection_attempt"
    assert error["field"] == "personalInfo.email"

    records = [record for record in caplog.records if record.name == "cvforge.security"]
    assert len(records) == 1
    message = records[0].getMessage()
    assert "injection_attempt" in message
    assert "action=cv_create" in message
    assert "'$where'" in message
    assert "sleep(5000)" not in caplog.text
    assert await _cv_count() == 0


async def test_prototype_key_is_rejected(client) -> None:
    payload = cv_payload()
    payload["skills"] = [{"name": "Python", "__proto__": {"isAdmin": True}}]

    response = await client.post("/api/v1/cvs", json=payload, headers=USER)

    assert response.status_code == 400
    error = response.json()["detail"]["errors"][0]
    assert error["type"] == "value_error.injection_attempt"
    assert error["field"] == "skills.0"


async def test_operator_key_in_update_leaves_cv_untouched(client) -> None:
    created = await client.post("/api/v1/cvs", json=cv_payload("Original"), headers=USER)
    cv_id = created.json()["cv"]["id"]
    payload = cv_payload("Changed")
    payload["$set"] = {"owner_id": "someone-else"}

    response = await client.put(f"/api/v1/cvs/{cv_id}", json=payload, headers=USER)
    detail = await client.get(f"/api/v1/cvs/{cv_id}", headers=USER)

    assert response.status_code == 400
    assert response.json()["detail"]["errors"][0]["field"] == "body"
    assert detail.json()["cv"]["title"] == "Original"


async def test_dollar_inside_values_is_allowed(client) -> None:
    payload = cv_payload("Pricing $ analyst")
    payload["summary"] = "Saved $100k in annual costs"

    response = await client.post("/api/v1/cvs", json=payload, headers=USER)

    assert response.status_code == 201
    assert response.json()["cv"]["title"] == "Pricing $ analyst"


async def test_deeply_nested_payload_is_rejected(client) -> None:
    nested: dict = {"leaf": "x"}
    for _ in range(60):
        nested = {"child": nested}
    payload = cv_payload()
    payload["extra"] = nested

    response = await client.post("/api/v1/cvs", json=payload, headers=USER)

    assert response.status_code == 400
    assert response.json()["detail"]["errors"][0]["type"] == "value_error.input_too_deep"


async def test_cv_write_rate_limit_per_user(client, monkeypatch) -> None:
    monkeypatch.setattr(main_module.settings, "cv_write_rate_limit_per_user", 2)

    statuses: list[int] = []
    for idx in range(3):
        response = await client.post("/api/v1/cvs", json=cv_payload(f"CV {idx}"), headers=USER)
        statuses.append(response.status_code)

    assert statuses == [201, 201, 429]
    assert int(response.headers["Retry-After"]) >= 1

    other = await client.post(
        "/api/v1/cvs",
        json=cv_payload("Other"),
        headers={"X-Authenticated-User": "user-deniz"},
    )
    assert other.status_code == 201


async def test_cv_write_rate_limit_per_ip_blocks_rotating_principals(client, monkeypatch) -> None:
    monkeypatch.setattr(main_module.settings, "cv_write_rate_limit_per_user", 100)
    monkeypatch.setattr(main_module.settings, "cv_write_rate_limit_per_ip", 2)

    statuses: list[int] = []
    for idx in range(3):
        response = await client.post(
            "/api/v1/cvs",
            json=cv_payload(f"CV {idx}"),
            headers={"X-Authenticated-User": f"rotating-{idx}"},
        )
        statuses.append(response.status_code)

    assert statuses == [201, 201, 429]


async def test_request_body_size_limit(client, monkeypatch) -> None:
    monkeypatch.setattr(main_module.settings, "max_request_body_bytes", 256)
    payload = cv_payload()
    payload["summary"] = "x" * 1024

    response = await client.post(
        "/api/v1/cvs",
        content=json.dumps(payload).encode(),
        headers={**USER, "Content-Type": "application/json"},
    )

    assert response.status_code == 413
    assert await _cv_count() == 0


async def test_metrics_endpoint_hidden_until_configured(client) -> None:
    response = await client.get("/api/v1/metrics")
    assert response.status_code == 404


async def test_metrics_endpoint_requires_token_and_counts_rejections(client, monkeypatch) -> None:
    monkeypatch.setattr(main_module.settings, "admin_api_token", "test-admin-token")

    missing = await client.get("/api/v1/metrics")
    wrong = await client.get("/api/v1/metrics", headers={"X-Admin-Token": "nope"})
    assert missing.status_code == 401
    assert wrong.status_code == 401

    injected = cv_payload()
    injected["filter"] = {"$ne": None}
    await client.post("/api/v1/cvs", json=injected, headers=USER)
    invalid = cv_payload()
    invalid["template"] = "neon"
    await client.post("/api/v1/cvs", json=invalid, headers=USER)
    created = await client.post("/api/v1/cvs", json=cv_payload(), headers=USER)
    cv_id = created.json()["cv"]["id"]
    await client.get(f"/api/v1/cvs/{cv_id}", headers=USER)

    response = await client.get("/api/v1/metrics", headers={"X-Admin-Token": "test-admin-token"})

    assert response.status_code == 200
    body = response.json()
    assert body["rejections"] == {"value_error.injection_attempt": 1, "cv_validation": 1}
    entries = body["request_metrics"]
    assert entries["POST /api/v1/cvs 400"] == 2
    assert entries["GET /api/v1/cvs/{cv_id} 200"] == 1
    assert all(cv_id not in key for key in entries)
