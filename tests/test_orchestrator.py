import asyncio
import logging
from datetime import datetime, timezone

from blobsink.orchestrator import IngestionOrchestrator
from blobsink.schema_engine import Schema, SchemaDefinition, SchemaEngine
from blobsink.storage_client import StorageStatusError
from blobsink.time_bucket import TimeBucketer
from blobsink.trace_context import reset_context, set_context

DOC = b"<IDOC><OrderHeader><OrderId>SO-7</OrderId><CustomerId>C-9</CustomerId></OrderHeader></IDOC>"
AT_1347 = datetime(2026, 10, 19, 13, 47, tzinfo=timezone.utc)


def _orders(partitions=2) -> Schema:
    return Schema(SchemaDefinition.model_validate({
        "name": "orders",
        "identify": "//OrderHeader",
        "filename": "orders-{partition}.csv",
        "partitions": partitions,
        "columns": [
            {"header": "OrderId", "path": "//OrderId", "enclosure": '"'},
            {"header": "CustomerId", "path": "//CustomerId", "enclosure": '"'},
        ],
    }))


def _orchestrator(storage, schemas=None, write_headers=False):
    engine = SchemaEngine(schemas) if schemas is not None else None
    return IngestionOrchestrator(
        storage=storage,
        engine=engine,
        bucketer=TimeBucketer("1 hour", "%H:%M:%S"),
        write_headers=write_headers,
        clock=lambda: AT_1347,
    )


async def test_raw_document_and_rows(storage, fake_service):
    result = await _orchestrator(storage, [_orders()]).ingest(DOC)

    assert result.ok
    assert result.bucket == "13:00:00"
    raw = fake_service.paths("BlockBlob")
    assert len(raw) == 1
    assert raw[0].startswith("13:00:00/name-") and raw[0].endswith(".xml")
    assert bytes(fake_service.blobs[raw[0]].data) == DOC
    assert fake_service.text("13:00:00/orders-1.csv") == '"SO-7","C-9"\n'
    assert [o.kind for o in result.outcomes] == ["BlockBlob", "AppendBlob"]


async def test_rotation_across_documents(storage, fake_service):
    orchestrator = _orchestrator(storage, [_orders(partitions=2)])
    for _ in range(3):
        assert (await orchestrator.ingest(DOC)).ok

    assert fake_service.text("13:00:00/orders-1.csv") == '"SO-7","C-9"\n' * 2
    assert fake_service.text("13:00:00/orders-2.csv") == '"SO-7","C-9"\n'
    assert len(fake_service.paths("BlockBlob")) == 3


async def test_raw_paths_are_unique(storage, fake_service):
    orchestrator = _orchestrator(storage)
    await asyncio.gather(*(orchestrator.ingest(b"<doc/>") for _ in range(5)))
    assert len(fake_service.paths("BlockBlob")) == 5


async def test_headers_written_on_create(storage, fake_service):
    orchestrator = _orchestrator(storage, [_orders(partitions=1)], write_headers=True)
    await orchestrator.ingest(DOC)
    await orchestrator.ingest(DOC)
    assert fake_service.text("13:00:00/orders-1.csv") == '"OrderId","CustomerId"\n' + '"SO-7","C-9"\n' * 2


async def test_non_matching_document_only_stores_raw(storage, fake_service):
    result = await _orchestrator(storage, [_orders()]).ingest(b"<Invoice/>")
    assert result.ok
    assert fake_service.paths("AppendBlob") == []
    assert len(fake_service.paths("BlockBlob")) == 1


async def test_malformed_document_fails_but_raw_is_kept(storage, fake_service):
    result = await _orchestrator(storage, [_orders()]).ingest(b"<IDOC><OrderHeader>")
    assert not result.ok
    assert [f.kind for f in result.failures] == ["parse"]
    assert len(fake_service.paths("BlockBlob")) == 1


async def test_malformed_document_without_schemas_is_stored(storage, fake_service):
    result = await _orchestrator(storage).ingest(b"not xml at all")
    assert result.ok
    assert len(fake_service.paths("BlockBlob")) == 1


async def test_failed_append_fails_whole_result(storage, fake_service, caplog):
    fake_service.fail_paths["13:00:00/orders-1.csv"] = 500
    token = set_context(request_id="req-abc")
    try:
        with caplog.at_level(logging.ERROR, logger="blobsink.orchestrator"):
            result = await _orchestrator(storage, [_orders()]).ingest(DOC)
    finally:
        reset_context(token)

    assert not result.ok
    assert result.correlation_id == "req-abc"
    assert [f.path for f in result.failures] == ["13:00:00/orders-1.csv"]
    # no rollback of the raw write
    assert len(fake_service.paths("BlockBlob")) == 1
    assert any("req-abc" in r.getMessage() for r in caplog.records)


async def test_correlation_id_generated_when_missing(storage):
    result = await _orchestrator(storage).ingest(b"<doc/>")
    assert len(result.correlation_id) == 32


async def test_failed_raw_write_fails_result(storage, fake_service):
    async def failing_put(path, data, metadata=None, content_type="application/xml"):
        raise StorageStatusError(503, "Server Busy", path=path)

    storage.put_object = failing_put
    result = await _orchestrator(storage, [_orders()]).ingest(DOC)
    assert not result.ok
    assert [f.kind for f in result.failures] == ["BlockBlob"]
    assert fake_service.text("13:00:00/orders-1.csv") == '"SO-7","C-9"\n'


async def test_schema_evaluation_failure_still_awaits_raw_write(storage, fake_service):
    orchestrator = _orchestrator(storage, [_orders()])

    def broken_evaluate(root):
        raise RuntimeError("extraction blew up")

    orchestrator.engine.evaluate = broken_evaluate
    result = await orchestrator.ingest(DOC)

    assert not result.ok
    assert [f.kind for f in result.failures] == ["schema"]
    assert [o.kind for o in result.outcomes if o.ok] == ["BlockBlob"]
    assert len(fake_service.paths("BlockBlob")) == 1
    assert fake_service.paths("AppendBlob") == []
