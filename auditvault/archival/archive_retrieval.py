"""
Archive retrieval.

Reads records back out of stored archives. Archive-level filters select the
archives, offset/limit paginate over them, and record-level filters narrow the
records inside each returned archive. Archives that fail to decode are left
out of the result and listed in excluded_archive_ids.
"""

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

import structlog

from .archive_codec import decode_archive
from .archive_logging import ArchivalLogger
from .archive_metrics import ArchivalMetrics
from .archive_models import (
    ArchiveRetrievalRequest, ArchiveRetrievalResult, DateRange, RetrievedArchive, utc_now
)
from .archive_store import ArchiveStore

logger = structlog.get_logger(__name__)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _in_date_range(record: Dict[str, Any], date_range: DateRange) -> bool:
    timestamp = parse_timestamp(record.get('timestamp'))
    start = parse_timestamp(date_range.start)
    end = parse_timestamp(date_range.end)
    if timestamp is None or start is None or end is None:
        return False
    return start <= timestamp <= end


class RetrievalEngine:
    """Serves filtered, paginated reads out of archived bundles."""

    def __init__(
        self,
        archive_store: ArchiveStore,
        metrics: Optional[ArchivalMetrics] = None,
        operation_log: Optional[ArchivalLogger] = None,
        default_limit: Optional[int] = None
    ):
        self.archive_store = archive_store
        self.metrics = metrics or ArchivalMetrics()
        self.operation_log = operation_log
        self.default_limit = default_limit

    @staticmethod
    def filter_records(records: List[Dict[str, Any]], request: ArchiveRetrievalRequest) -> List[Dict[str, Any]]:
        """Apply the record-level filters of a request."""
        filtered = []
        for record in records:
            if request.principal_id and record.get('principal_id') != request.principal_id:
                continue
            if request.organization_id and record.get('organization_id') != request.organization_id:
                continue
            if request.actions and record.get('action') not in request.actions:
                continue
            if request.date_range and not _in_date_range(record, request.date_range):
                continue
            filtered.append(record)
        return filtered

    def _paginate(self, archives: List[Any], request: ArchiveRetrievalRequest) -> List[Any]:
        offset = max(request.offset or 0, 0)
        limit = request.limit if request.limit is not None else self.default_limit
        if limit is None:
            return archives[offset:]
        return archives[offset:offset + max(limit, 0)]

    async def retrieve_archived_data(self, request: ArchiveRetrievalRequest) -> ArchiveRetrievalResult:
        """
        Return the records matching request, grouped by archive.

        record_count is the number of records surviving the record-level
        filters across all returned archives. Retrieval statistics are
        updated once for each returned archive; a failed update is logged
        for that archive and does not fail the request.
        """
        start_time = time.perf_counter()
        request_id = f"retrieval_{utc_now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex}"

        try:
            matching = await self.archive_store.find_matching_archives(request)
        except Exception as e:
            logger.error("Failed to find matching archives", request_id=request_id, error=str(e))
            raise

        page = self._paginate(matching, request)

        returned: List[RetrievedArchive] = []
        excluded: List[str] = []
        record_count = 0
        total_size = 0

        for archive in page:
            try:
                records = decode_archive(archive)
            except Exception as e:
                logger.warning("Excluding archive that could not be decoded",
                               request_id=request_id, archive_id=archive.id,
                               error=str(e), error_type=type(e).__name__)
                excluded.append(archive.id)
                continue

            filtered = self.filter_records(records, request)
            returned.append(RetrievedArchive(
                archive_id=archive.id,
                metadata=archive.metadata,
                records=filtered,
            ))
            record_count += len(filtered)
            total_size += len(json.dumps(filtered, default=str, separators=(',', ':')).encode('utf-8'))

        retrieved_at = utc_now()
        for retrieved in returned:
            try:
                await self.archive_store.update_retrieval_statistics(retrieved.archive_id, retrieved_at)
            except Exception as e:
                logger.error("Failed to update retrieval statistics",
                             request_id=request_id, archive_id=retrieved.archive_id,
                             error=str(e), error_type=type(e).__name__)
                self.metrics.record_policy_failure("retrieval_statistics")

        self.metrics.record_retrieval(len(returned))

        result = ArchiveRetrievalResult(
            request_id=request_id,
            retrieved_at=retrieved_at.isoformat(),
            record_count=record_count,
            total_size=total_size,
            retrieval_time_ms=(time.perf_counter() - start_time) * 1000,
            archives=returned,
            excluded_archive_ids=excluded,
        )

        logger.info("Archived data retrieved",
                    request_id=request_id,
                    archives=len(returned),
                    excluded=len(excluded),
                    record_count=record_count)

        if self.operation_log:
            self.operation_log.log_retrieval(result)

        return result
