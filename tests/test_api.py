# tests/test_api.py
"""HTTP surface: auth, permissions, plan gates, rate-limit headers, bulk jobs, usage, admin."""
import datetime
import io
import json

from sqlalchemy import select

from conftest import ADMIN_KEY, GOOD_CONTENT, GOOD_VISUAL
from copyflow.models import ApiUsage, BulkJob

ITEM = {"productName": "iPhone 15 Pro", "category": "electronics",
        "writingStyle": "professional", "language": "en"}


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _usage_rows(db):
    with db.session() as s:
        return [(u.endpoint, u.status) for u in s.scalars(select(ApiUsage).order_by(ApiUsage.id))]


# ---------------------------------------------------------------------------
# Auth and permissions
# ---------------------------------------------------------------------------
def test_missing_or_unknown_key_is_401(client, db):
    r = client.post("/api/v1/generate", json=ITEM)
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid or missing API key"

    r = client.post("/api/v1/generate", json=ITEM, headers=_auth("cf_" + "f" * 32))
    assert r.status_code == 401
    # nothing to attribute the request to
    assert _usage_rows(db) == []


def test_generate_success(client, issue_key, db):
    _, token = issue_key(plan="free", permissions=["content:generate"])
    r = client.post("/api/v1/generate", json=ITEM, headers=_auth(token))

    assert r.status_code == 200
    assert r.json() == GOOD_CONTENT
    assert r.headers["X-RateLimit-Limit"] == "5"
    assert r.headers["X-RateLimit-Remaining"] == "4"
    assert int(r.headers["X-RateLimit-Reset"]) > 0
    assert _usage_rows(db) == [("/api/v1/generate", 200)]


def test_generate_scope_is_required(client, issue_key, db):
    _, token = issue_key(plan="business", permissions=["bulk:process"])
    r = client.post("/api/v1/generate", json=ITEM, headers=_auth(token))
    assert r.status_code == 403
    assert r.json()["error"].startswith("Insufficient permissions")
    assert _usage_rows(db) == [("/api/v1/generate", 403)]


def test_bulk_scope_is_required(client, issue_key):
    _, token = issue_key(plan="business", permissions=["content:generate"])
    r = client.post("/api/v1/bulk", json={"name": "b", "items": [ITEM]}, headers=_auth(token))
    assert r.status_code == 403


def test_bulk_requires_business_plan(client, issue_key):
    _, token = issue_key(plan="pro", permissions=["*"])
    r = client.post("/api/v1/bulk", json={"name": "b", "items": [ITEM]}, headers=_auth(token))
    assert r.status_code == 403
    assert "Business or Enterprise" in r.json()["error"]


def test_invalid_body_is_400_with_details(client, issue_key):
    _, token = issue_key(plan="free", permissions=["*"])
    r = client.post("/api/v1/generate", json={**ITEM, "category": "spaceships"}, headers=_auth(token))
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Invalid input data"
    assert body["error_code"] == "E_VALIDATION"
    assert any("category" in d["loc"] for d in body["details"])


def test_generation_failure_is_500(client, issue_key, fake_llm):
    _, token = issue_key(plan="free", permissions=["*"])
    fake_llm.queue("I cannot do that")
    r = client.post("/api/v1/generate", json=ITEM, headers=_auth(token))
    assert r.status_code == 500
    assert r.json()["error_code"] == "E_GENERATION"


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------
def test_rate_limit_rejection_headers_and_ledger(client, issue_key, db):
    _, token = issue_key(plan="free", permissions=["*"])
    for _ in range(5):
        assert client.post("/api/v1/generate", json=ITEM, headers=_auth(token)).status_code == 200

    r = client.post("/api/v1/generate", json=ITEM, headers=_auth(token))
    assert r.status_code == 429
    assert r.json()["error"] == "Rate limit exceeded"
    assert r.headers["X-RateLimit-Limit"] == "5"
    assert r.headers["X-RateLimit-Remaining"] == "0"
    assert int(r.headers["Retry-After"]) >= 1
    assert _usage_rows(db)[-1] == ("/api/v1/generate", 429)


def test_business_plan_gets_premium_quota(client, issue_key):
    _, token = issue_key(plan="business", permissions=["*"])
    r = client.post("/api/v1/generate", json=ITEM, headers=_auth(token))
    assert r.headers["X-RateLimit-Limit"] == "50"


def test_only_admitted_requests_are_metered(client, issue_key, db):
    _, token = issue_key(plan="pro", permissions=["*"])
    client.post("/api/v1/generate", json=ITEM, headers=_auth(token))
    client.post("/api/v1/bulk", json={"name": "b", "items": [ITEM]}, headers=_auth(token))
    client.get("/api/v1/bulk", params={"jobId": "missing"}, headers=_auth(token))
    client.get("/api/v1/usage", headers=_auth(token))

    with db.session() as s:
        rows = [(u.endpoint, u.method, u.status, u.metered)
                for u in s.scalars(select(ApiUsage).order_by(ApiUsage.id))]
    assert rows == [
        ("/api/v1/generate", "POST", 200, True),
        ("/api/v1/bulk", "POST", 403, False),
        ("/api/v1/bulk", "GET", 404, False),
        ("/api/v1/usage", "GET", 200, False),
    ]


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------
def test_analyze_url_requires_paid_plan(client, issue_key):
    _, token = issue_key(plan="free", permissions=["*"])
    r = client.post("/api/v1/analyze-url", headers=_auth(token), json={
        "url": "https://www.amazon.com/dp/B0TEST", "writingStyle": "casual", "language": "en"})
    assert r.status_code == 403


def test_analyze_url(client, issue_key, fake_llm):
    _, token = issue_key(plan="pro", permissions=["content:generate"])
    fake_llm.queue(json.dumps({"improvements": ["Shorter title"], "content": GOOD_CONTENT}))
    r = client.post("/api/v1/analyze-url", headers=_auth(token), json={
        "url": "https://www.amazon.com/dp/B0TEST", "writingStyle": "casual", "language": "en"})
    assert r.status_code == 200
    assert r.json()["improvements"] == ["Shorter title"]
    assert r.json()["competitor"]["title"] == "Competitor phone"


def test_analyze_url_unsupported_site_is_400(client, issue_key, fake_llm):
    _, token = issue_key(plan="pro", permissions=["*"])
    r = client.post("/api/v1/analyze-url", headers=_auth(token), json={
        "url": "https://example.com/p/1", "writingStyle": "casual", "language": "en"})
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_FETCH"
    assert fake_llm.calls == []


def test_analyze_image(client, issue_key, fake_llm):
    _, token = issue_key(plan="pro", permissions=["*"])
    fake_llm.queue(json.dumps(GOOD_VISUAL), json.dumps(GOOD_CONTENT))
    r = client.post(
        "/api/v1/analyze-image",
        headers=_auth(token),
        files={"image": ("shoe.png", io.BytesIO(b"\x89PNG fake"), "image/png")},
        data={"writingStyle": "creative", "language": "en"},
    )
    assert r.status_code == 200
    assert r.json()["visualAnalysis"]["productType"] == "sneaker"


def test_analyze_image_rejects_unsupported_type(client, issue_key):
    _, token = issue_key(plan="pro", permissions=["*"])
    r = client.post(
        "/api/v1/analyze-image",
        headers=_auth(token),
        files={"image": ("anim.gif", io.BytesIO(b"GIF89a"), "image/gif")},
        data={"writingStyle": "creative", "language": "en"},
    )
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_VALIDATION"


def test_viral_with_wrong_shape_is_500(client, issue_key):
    # the fake LLM's default reply is product content, not viral content
    _, token = issue_key(plan="free", permissions=["*"])
    r = client.post("/api/v1/generate/viral", json=ITEM, headers=_auth(token))
    assert r.status_code == 500


# ---------------------------------------------------------------------------
# Bulk jobs
# ---------------------------------------------------------------------------
def test_bulk_submit_then_poll(client, issue_key, services, dispatcher):
    _, token = issue_key(plan="business", permissions=["bulk:process"])
    items = [ITEM, {**ITEM, "productName": ""}]
    r = client.post("/api/v1/bulk", json={"name": "Batch1", "items": items}, headers=_auth(token))

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "pending"
    assert body["totalItems"] == 2
    assert body["message"]
    job_id = body["jobId"]
    assert dispatcher.dispatched == [job_id]

    polled = client.get("/api/v1/bulk", params={"jobId": job_id}, headers=_auth(token)).json()
    assert polled["status"] in ("pending", "processing")
    assert "results" not in polled

    services.pipeline.process_job(job_id)
    done = client.get("/api/v1/bulk", params={"jobId": job_id}, headers=_auth(token)).json()
    assert done["status"] == "completed"
    assert (done["totalItems"], done["processed"], done["successful"], done["failed"]) == (2, 2, 1, 1)
    assert done["results"][0]["success"] is True
    assert done["results"][1] == {"success": False, "error": done["results"][1]["error"]}

    again = client.get("/api/v1/bulk", params={"jobId": job_id}, headers=_auth(token)).json()
    assert again["results"] == done["results"]


def test_bulk_over_100_items_is_rejected_before_job_creation(client, issue_key, db):
    _, token = issue_key(plan="enterprise", permissions=["*"])
    r = client.post("/api/v1/bulk", json={"name": "Big", "items": [ITEM] * 101}, headers=_auth(token))
    assert r.status_code == 400
    r = client.post("/api/v1/bulk", json={"name": "Empty", "items": []}, headers=_auth(token))
    assert r.status_code == 400
    with db.session() as s:
        assert s.scalars(select(BulkJob)).all() == []


def test_bulk_poll_errors(client, issue_key):
    _, token = issue_key(plan="business", permissions=["*"])
    _, other_token = issue_key(plan="business", permissions=["*"])
    job_id = client.post("/api/v1/bulk", json={"name": "b", "items": [ITEM]},
                         headers=_auth(token)).json()["jobId"]

    assert client.get("/api/v1/bulk", headers=_auth(token)).status_code == 400
    assert client.get("/api/v1/bulk", params={"jobId": "nope"}, headers=_auth(token)).status_code == 404
    r = client.get("/api/v1/bulk", params={"jobId": job_id}, headers=_auth(other_token))
    assert r.status_code == 404


# ---------------------------------------------------------------------------
# Usage analytics
# ---------------------------------------------------------------------------
def test_usage_endpoint(client, issue_key, services):
    _, token = issue_key(plan="business", permissions=["*"])
    cred = services.credentials.resolve(token)
    now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
    for i in range(10):
        services.ledger.record(cred.id, cred.tenant_id, "/api/v1/generate", "POST",
                               200 if i < 8 else 500, timestamp=now - datetime.timedelta(days=1))

    r = client.get("/api/v1/usage", params={"period": "7d"}, headers=_auth(token))
    assert r.status_code == 200
    body = r.json()
    assert body["period"] == "7d"
    assert body["summary"]["totalRequests"] == 10
    assert body["summary"]["successfulRequests"] == 8
    assert body["summary"]["failedRequests"] == 2
    assert body["summary"]["successRate"] == 80.0
    assert body["endpointUsage"] == [{"endpoint": "/api/v1/generate", "requests": 10}]


def test_usage_counts_generations(client, issue_key):
    _, token = issue_key(plan="free", permissions=["*"])
    client.post("/api/v1/generate", json=ITEM, headers=_auth(token))
    body = client.get("/api/v1/usage", headers=_auth(token)).json()
    assert body["period"] == "30d"
    assert body["summary"]["generationsCount"] == 1


def test_usage_rejects_unknown_period(client, issue_key):
    _, token = issue_key(plan="free", permissions=["*"])
    r = client.get("/api/v1/usage", params={"period": "2w"}, headers=_auth(token))
    assert r.status_code == 400


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------
def test_admin_routes_require_admin_key(client):
    assert client.post("/api/v1/admin/tenants", json={"name": "Acme"}).status_code == 401
    r = client.post("/api/v1/admin/tenants", json={"name": "Acme"}, headers={"X-Admin-Key": "wrong"})
    assert r.status_code == 401


def test_admin_key_lifecycle(client):
    admin = {"X-Admin-Key": ADMIN_KEY}
    r = client.post("/api/v1/admin/tenants", headers=admin,
                    json={"name": "Acme", "plan": "business", "ownerEmail": "o@example.com"})
    assert r.status_code == 201
    tenant_id = r.json()["id"]

    r = client.post("/api/v1/admin/keys", headers=admin,
                    json={"tenantId": tenant_id, "name": "ci", "permissions": ["*"]})
    assert r.status_code == 201
    key_id, token = r.json()["id"], r.json()["key"]
    assert token.startswith("cf_")

    listed = client.get("/api/v1/admin/keys", params={"tenantId": tenant_id}, headers=admin).json()
    assert listed[0]["key"] == token[:8] + "..."

    assert client.post("/api/v1/generate", json=ITEM, headers=_auth(token)).status_code == 200

    r = client.post(f"/api/v1/admin/keys/{key_id}/deactivate", params={"tenantId": tenant_id},
                    headers=admin)
    assert r.status_code == 200
    assert client.post("/api/v1/generate", json=ITEM, headers=_auth(token)).status_code == 401

    r = client.delete(f"/api/v1/admin/keys/{key_id}", params={"tenantId": tenant_id}, headers=admin)
    assert r.status_code == 200
    r = client.delete(f"/api/v1/admin/keys/{key_id}", params={"tenantId": tenant_id}, headers=admin)
    assert r.status_code == 404


def test_admin_rejects_bad_plan(client):
    r = client.post("/api/v1/admin/tenants", headers={"X-Admin-Key": ADMIN_KEY},
                    json={"name": "Acme", "plan": "platinum"})
    assert r.status_code == 400
