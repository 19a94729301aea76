# copyflow/services.py
from dataclasses import dataclass

from copyflow.auth import CredentialStore
from copyflow.bulk import BulkJobPipeline
from copyflow.config import Settings
from copyflow.connectors.page_scraper import PageScraper
from copyflow.db import Database
from copyflow.llm_wrapper import LLMClient
from copyflow.notifications import build_notifier
from copyflow.processors.content_generator import ContentGenerator
from copyflow.rate_limiter import build_limiter
from copyflow.usage import UsageLedger
from copyflow.workers import build_dispatcher


@dataclass
class Services:
    """Everything a request handler or worker needs, wired once per process."""
    settings: Settings
    db: Database
    credentials: CredentialStore
    ledger: UsageLedger
    limiter: object
    generator: ContentGenerator
    pipeline: BulkJobPipeline


def build_services(settings: Settings) -> Services:
    db = Database(settings.database_url)
    ledger = UsageLedger(db)
    generator = ContentGenerator(
        LLMClient.from_settings(settings),
        scraper=PageScraper(timeout=settings.scrape_timeout_seconds),
        max_image_bytes=settings.max_image_bytes,
    )
    pipeline = BulkJobPipeline(db, generator, notifier=build_notifier(settings),
                               lease_seconds=settings.job_lease_seconds)
    pipeline.dispatcher = build_dispatcher(settings, pipeline.process_job)
    return Services(
        settings=settings,
        db=db,
        credentials=CredentialStore(db),
        ledger=ledger,
        limiter=build_limiter(settings, ledger),
        generator=generator,
        pipeline=pipeline,
    )
