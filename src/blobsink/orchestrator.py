from __future__ import annotations

import asyncio
import logging
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from blobsink.append_log import AppendLogWriter
from blobsink.schema_engine import SchemaEngine, parse_document
from blobsink.storage_client import BlobKind, BlobStorageClient
from blobsink.time_bucket import TimeBucketer
from blobsink.trace_context import get_request_id, new_request_id, reset_context, set_context

logger = logging.getLogger(__name__)


@dataclass
class WriteOutcome:
    path: str
    kind: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class IngestResult:
    correlation_id: str
    bucket: str
    outcomes: List[WriteOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failures(self) -> List[WriteOutcome]:
        return [o for o in self.outcomes if not o.ok]


class IngestionOrchestrator:
    """
    Per-document fan-out: one immutable raw blob plus one append per matching schema.

    Every write runs concurrently and independently. The result is ok only when all
    of them succeeded; writes that did land are left in place.
    """

    def __init__(
        self,
        storage: BlobStorageClient,
        engine: Optional[SchemaEngine],
        bucketer: TimeBucketer,
        write_headers: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.engine = engine
        self.bucketer = bucketer
        self.writer = AppendLogWriter(storage)
        self.write_headers = write_headers
        self.clock = clock

    async def ingest(self, body: bytes) -> IngestResult:
        correlation_id = get_request_id() or new_request_id()
        bucket = self.bucketer.bucket(self.clock() if self.clock else None)
        tokens = set_context(request_id=correlation_id, bucket=bucket)
        try:
            return await self._ingest(correlation_id, bucket, body)
        finally:
            reset_context(tokens)

    async def _ingest(self, correlation_id: str, bucket: str, body: bytes) -> IngestResult:
        result = IngestResult(correlation_id=correlation_id, bucket=bucket)

        raw_path = f"{bucket}/name-{uuid.uuid4()}.xml"
        paths = [(raw_path, BlobKind.IMMUTABLE_OBJECT.value)]
        tasks = [asyncio.ensure_future(self.storage.put_object(raw_path, body))]

        if self.engine is not None and self.engine.schemas:
            # a failure here is recorded and the raw write is still awaited below
            targets = []
            try:
                root = parse_document(body)
            except ET.ParseError as e:
                result.outcomes.append(WriteOutcome(path="<document>", kind="parse", error=e))
            else:
                try:
                    targets = self.engine.evaluate(root)
                except Exception as e:
                    result.outcomes.append(WriteOutcome(path="<document>", kind="schema", error=e))
                for target in targets:
                    path = f"{bucket}/{target.filename}"
                    header = target.header if self.write_headers else None
                    paths.append((path, BlobKind.APPEND_LOG.value))
                    tasks.append(asyncio.ensure_future(self.writer.append(path, target.row, header=header)))
                    logger.debug("schema %s matched, appending to %s", target.schema, path)

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for (path, kind), outcome in zip(paths, results):
            error = outcome if isinstance(outcome, BaseException) else None
            result.outcomes.append(WriteOutcome(path=path, kind=kind, error=error))

        for failure in result.failures:
            logger.error(
                "write failed request_id=%s kind=%s path=%s: %r",
                correlation_id, failure.kind, failure.path, failure.error,
                exc_info=failure.error,
            )
        if result.ok:
            logger.info("stored document request_id=%s writes=%d", correlation_id, len(result.outcomes))
        return result
