"""
Append log builder - bronze batches into the silver log.

Manifesto:
    Silver is the durable history. Rows are appended in batch order,
    tagged with lineage, and never reordered, updated or removed. A batch
    that overlaps previously seen ``(entity_id, observed_at)`` pairs is
    appended as-is; deduplication is gold's job. Re-applying a batch after
    a crash mid-append is therefore safe: the duplicates it creates are
    absorbed by the gold rebuild (L1 append semantics).

Tags:
    silver, append-only, lineage, idempotency-l1
"""

from __future__ import annotations

from medallion.core.errors import MaterializeError, MedallionError
from medallion.core.logging import get_logger
from medallion.core.models import RawBatch, SilverRow
from medallion.core.protocols import SilverLog
from medallion.core.timestamps import Clock, ensure_utc, utc_now

logger = get_logger(__name__)


class AppendLogBuilder:
    """Applies raw batches to a :class:`SilverLog`."""

    def __init__(self, silver_log: SilverLog, *, clock: Clock = utc_now) -> None:
        self.silver_log = silver_log
        self._clock = clock

    def apply(self, batch: RawBatch) -> int:
        """Append every record of ``batch``; return the appended count.

        All rows from one call share a single ``ingestion_time``.

        Raises:
            MaterializeError: On unrecoverable storage errors.
        """
        ingestion_time = ensure_utc(self._clock())
        rows = [SilverRow.from_raw(record, batch, ingestion_time) for record in batch.records]
        if not rows:
            logger.info("silver_batch_empty", batch_id=batch.batch_id)
            return 0

        try:
            appended = self.silver_log.append(rows)
        except MedallionError:
            raise
        except Exception as e:
            raise MaterializeError(f"Silver append failed: {e}", cause=e).with_context(
                batch_id=batch.batch_id
            ) from e

        logger.info("silver_batch_applied", batch_id=batch.batch_id, appended=appended)
        return appended
