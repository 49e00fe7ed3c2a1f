from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from flidesk_engines.checkout.models import PurgeReport, SessionStatus, SweepReport, UpdateOutcome
from flidesk_engines.checkout.repository import SessionStore
from flidesk_engines.config import runtime_config

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ExpirationSweeper:
    """Best-effort, per-row cleanup of abandoned checkout sessions."""

    def __init__(
        self,
        store: SessionStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self.store = store
        self._clock = clock or _now
        self._batch_size = batch_size

    def sweep_expired(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self._clock()
        report = SweepReport()
        session_ids = self.store.list(
            status=SessionStatus.pending, expires_before=now, limit=self._batch_size
        )
        report.scanned = len(session_ids)
        for session_id in session_ids:
            try:
                outcome = self.store.conditionally_update(
                    session_id,
                    SessionStatus.pending,
                    SessionStatus.expired,
                    status_reason="ttl_elapsed",
                )
            except Exception as exc:
                logger.error(f"Failed to expire checkout session '{session_id}': {exc}")
                report.failed.append(session_id)
                continue
            if outcome == UpdateOutcome.applied:
                report.expired.append(session_id)
            else:
                report.skipped.append(session_id)
        logger.info(
            "Expiration sweep: scanned=%s expired=%s skipped=%s failed=%s",
            report.scanned,
            len(report.expired),
            len(report.skipped),
            len(report.failed),
        )
        return report

    def purge_expired(
        self,
        retention: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> PurgeReport:
        """Delete expired sessions older than the retention window.

        Completed and failed sessions are never purged; they back the
        subscription audit trail.
        """
        if retention is None:
            retention = timedelta(days=runtime_config.get_expired_retention_days())
        cutoff = (now or self._clock()) - retention
        report = PurgeReport()
        session_ids = self.store.list(
            status=SessionStatus.expired, expires_before=cutoff, limit=self._batch_size
        )
        report.scanned = len(session_ids)
        for session_id in session_ids:
            try:
                if self.store.delete(session_id, expected_status=SessionStatus.expired):
                    report.deleted.append(session_id)
            except Exception as exc:
                logger.error(f"Failed to purge checkout session '{session_id}': {exc}")
                report.failed.append(session_id)
        logger.info(
            "Expired session purge: scanned=%s deleted=%s failed=%s",
            report.scanned,
            len(report.deleted),
            len(report.failed),
        )
        return report
