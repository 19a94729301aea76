# tests/conftest.py
"""
Shared fixtures: a disposable SQLite database per test, a scripted LLM, a
dispatcher that only records job ids (tests drive process_job themselves),
and a TestClient over an app built from those services.
"""
import json
import os

# copyflow.app builds a default app at import; keep it away from the real DB
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_copyflow.db")
os.environ.setdefault("MOCK_LLM", "true")

import pytest
from fastapi.testclient import TestClient

from copyflow.app import create_app
from copyflow.auth import CredentialStore
from copyflow.bulk import BulkJobPipeline
from copyflow.config import Settings
from copyflow.connectors.page_scraper import SUPPORTED_SITES_MESSAGE, site_for_url
from copyflow.db import Database
from copyflow.errors import ExternalFetchError
from copyflow.processors.content_generator import ContentGenerator
from copyflow.rate_limiter import (
    InMemorySlidingWindowLimiter, RateLimit, TIER_BASIC, TIER_ENTERPRISE, TIER_PREMIUM,
)
from copyflow.schemas import CompetitorSnapshot
from copyflow.services import Services
from copyflow.usage import UsageLedger

ADMIN_KEY = "admin-secret"

GOOD_CONTENT = {
    "productTitle": "iPhone 15 Pro",
    "productDescription": "Titanium. Powerful. Pro.",
    "seoTitle": "Buy iPhone 15 Pro",
    "metaDescription": "The new iPhone 15 Pro.",
    "callToAction": "Order yours today",
    "keyFeatures": ["A17 Pro", "Titanium", "USB-C", "48MP camera", "Action button"],
    "tagsKeywords": [f"tag{i}" for i in range(10)],
}

GOOD_VISUAL = {
    "productType": "sneaker",
    "colors": ["white"],
    "materials": ["leather"],
    "style": "minimal",
    "features": ["thick sole"],
    "targetAudience": "young adults",
}

TEST_LIMITS = {
    TIER_BASIC: RateLimit(5, 3600),
    TIER_PREMIUM: RateLimit(50, 3600),
    TIER_ENTERPRISE: RateLimit(500, 3600),
}


class FakeLLM:
    """Stands in for LLMClient: pops queued replies, then falls back to GOOD_CONTENT."""

    def __init__(self):
        self.replies = []
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def complete(self, messages, model=None, max_tokens=2000, temperature=0.7, image=None):
        self.calls.append({"messages": messages, "max_tokens": max_tokens,
                           "temperature": temperature, "image": image})
        reply = self.replies.pop(0) if self.replies else json.dumps(GOOD_CONTENT)
        if isinstance(reply, Exception):
            raise reply
        return {"text": reply, "model": "fake", "response_id": "fake-1", "raw": None}


class FakeScraper:
    def __init__(self, snapshot=None):
        self.fetched = []
        self.snapshot = snapshot or CompetitorSnapshot(
            title="Competitor phone", price="$999", description="A phone.",
            features=["fast"], rating="4.1 out of 5 stars")

    def fetch(self, url):
        if site_for_url(url) is None:
            raise ExternalFetchError(SUPPORTED_SITES_MESSAGE)
        self.fetched.append(url)
        return self.snapshot


class RecordingDispatcher:
    def __init__(self):
        self.dispatched = []

    def dispatch(self, job_id):
        self.dispatched.append(job_id)

    def shutdown(self, wait=True):
        pass


class RecordingNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def bulk_completed(self, email, job_name, successful, failed):
        if self.fail:
            raise ConnectionRefusedError("smtp down")
        self.sent.append((email, job_name, successful, failed))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'copyflow_test.db'}",
        admin_api_keys=[ADMIN_KEY],
        resume_jobs_on_startup=False,
    )


@pytest.fixture
def db(settings):
    database = Database(settings.database_url)
    database.init_db()
    yield database
    database.dispose()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def scraper():
    return FakeScraper()


@pytest.fixture
def generator(fake_llm, scraper):
    return ContentGenerator(fake_llm, scraper=scraper)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def credentials(db):
    return CredentialStore(db)


@pytest.fixture
def ledger(db):
    return UsageLedger(db)


@pytest.fixture
def pipeline(db, generator, dispatcher, notifier):
    return BulkJobPipeline(db, generator, dispatcher=dispatcher, notifier=notifier)


@pytest.fixture
def services(settings, db, credentials, ledger, generator, pipeline):
    return Services(
        settings=settings,
        db=db,
        credentials=credentials,
        ledger=ledger,
        limiter=InMemorySlidingWindowLimiter(limits=TEST_LIMITS),
        generator=generator,
        pipeline=pipeline,
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services), raise_server_exceptions=False)


@pytest.fixture
def issue_key(credentials):
    """issue_key(plan, permissions) -> (tenant_id, token)"""

    def _issue(plan="business", permissions=("*",), owner_email="owner@example.com"):
        tenant = credentials.create_tenant("Acme", plan=plan, owner_email=owner_email)
        _, token = credentials.create_key(tenant.id, "test key", list(permissions))
        return tenant.id, token

    return _issue


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
