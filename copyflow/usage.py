# copyflow/usage.py
"""
Append-only usage ledger: one row per API request attempt by a resolved credential.

Backs rate-limit window counting (ledger backend) and the /api/v1/usage analytics.
"""
import datetime
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError

from copyflow.db import Database, utcnow
from copyflow.models import ApiUsage, Generation
from copyflow.monitoring import get_logger
from copyflow.schemas import DailyUsage, EndpointUsage, UsageSummary

log = get_logger("usage")

PERIODS = {
    "1d": datetime.timedelta(days=1),
    "7d": datetime.timedelta(days=7),
    "30d": datetime.timedelta(days=30),
    "90d": datetime.timedelta(days=90),
}
DEFAULT_PERIOD = "30d"


class UsageLedger:
    def __init__(self, db: Database):
        self.db = db

    def record(self, credential_id: str, tenant_id: str, endpoint: str,
               method: str, status_code: int,
               timestamp: Optional[datetime.datetime] = None, metered: bool = False) -> None:
        """Fire-and-forget append. Never raises."""
        try:
            with self.db.session() as s:
                s.add(ApiUsage(
                    api_key_id=credential_id,
                    tenant_id=tenant_id,
                    endpoint=endpoint,
                    method=method,
                    status=int(status_code),
                    metered=bool(metered),
                    timestamp=timestamp or utcnow(),
                ))
        except SQLAlchemyError:
            log.exception("Failed to log API usage", extra={"api_key_id": credential_id})
        except Exception:
            log.exception("Unexpected error logging API usage", extra={"api_key_id": credential_id})

    @staticmethod
    def _window(credential_id, window_start, exclude_status, metered_only):
        conds = [ApiUsage.api_key_id == credential_id, ApiUsage.timestamp >= window_start]
        if exclude_status is not None:
            conds.append(ApiUsage.status != exclude_status)
        if metered_only:
            conds.append(ApiUsage.metered.is_(True))
        return conds

    def count_since(self, credential_id: str, window_start: datetime.datetime,
                    exclude_status: Optional[int] = None, metered_only: bool = False) -> int:
        conds = self._window(credential_id, window_start, exclude_status, metered_only)
        with self.db.session() as s:
            return s.scalar(select(func.count(ApiUsage.id)).where(and_(*conds))) or 0

    def oldest_since(self, credential_id: str, window_start: datetime.datetime,
                     exclude_status: Optional[int] = None,
                     metered_only: bool = False) -> Optional[datetime.datetime]:
        conds = self._window(credential_id, window_start, exclude_status, metered_only)
        with self.db.session() as s:
            return s.scalar(select(func.min(ApiUsage.timestamp)).where(and_(*conds)))

    def aggregate(self, credential_id: str, start: datetime.datetime,
                  end: datetime.datetime) -> UsageSummary:
        in_range = and_(
            ApiUsage.api_key_id == credential_id,
            ApiUsage.timestamp >= start,
            ApiUsage.timestamp <= end,
        )
        with self.db.session() as s:
            total = s.scalar(select(func.count(ApiUsage.id)).where(in_range)) or 0
            ok = s.scalar(select(func.count(ApiUsage.id)).where(
                in_range, ApiUsage.status >= 200, ApiUsage.status < 300)) or 0
            bad = s.scalar(select(func.count(ApiUsage.id)).where(
                in_range, ApiUsage.status >= 400)) or 0

            day = func.date(ApiUsage.timestamp)
            daily_rows = s.execute(
                select(day, func.count(ApiUsage.id)).where(in_range).group_by(day).order_by(day)
            ).all()

            n = func.count(ApiUsage.id)
            endpoint_rows = s.execute(
                select(ApiUsage.endpoint, n).where(in_range)
                .group_by(ApiUsage.endpoint).order_by(n.desc(), ApiUsage.endpoint)
            ).all()

        return UsageSummary(
            totalRequests=total,
            successfulRequests=ok,
            failedRequests=bad,
            dailyBreakdown=[
                DailyUsage(date=d if isinstance(d, str) else d.isoformat(), requests=c)
                for d, c in daily_rows
            ],
            endpointBreakdown=[EndpointUsage(endpoint=e, requests=c) for e, c in endpoint_rows],
        )

    def record_generation(self, tenant_id: str, credential_id: Optional[str], kind: str,
                          content: dict, product_name: Optional[str] = None,
                          category: Optional[str] = None, writing_style: Optional[str] = None,
                          language: Optional[str] = None) -> None:
        """Keep a successful single-request generation. Never raises."""
        try:
            with self.db.session() as s:
                s.add(Generation(
                    tenant_id=tenant_id,
                    api_key_id=credential_id,
                    kind=kind,
                    product_name=product_name,
                    category=category,
                    writing_style=writing_style,
                    language=language,
                    content=content,
                ))
        except SQLAlchemyError:
            log.exception("Failed to save generation", extra={"api_key_id": credential_id})

    def count_generations(self, credential_id: str, start: datetime.datetime,
                          end: datetime.datetime) -> int:
        with self.db.session() as s:
            return s.scalar(select(func.count(Generation.id)).where(
                Generation.api_key_id == credential_id,
                Generation.created_at >= start,
                Generation.created_at <= end,
            )) or 0


def period_window(period: Optional[str], now: Optional[datetime.datetime] = None):
    """Return (start, end) for a usage period key. Raises KeyError on unknown periods."""
    now = now or utcnow()
    return now - PERIODS[period or DEFAULT_PERIOD], now
