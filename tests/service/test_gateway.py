import asyncio
import gc
from datetime import datetime, timezone
from urllib.parse import unquote

import pytest

from conftest import BUCKET, FIXED_NOW, RecordingStore
from object_store import ObjectEntry, ObjectStoreError
from schema.files import FileCategory, UploadRequest
from service.errors import (
    InvalidKeyError,
    InvalidTypeError,
    MetadataWriteError,
    MissingSourceLinkError,
    SizeExceededError,
    StoreError,
    UploadValidationError,
)
from service.gateway import StorageGateway, encode_metadata_value, epoch_ms
from service.pdf_metadata import read_provenance

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def pdf_upload(data: bytes, name: str = "report.pdf", provenance: str | None = None) -> UploadRequest:
    return UploadRequest(
        raw_bytes=data,
        original_name=name,
        declared_mime_type="application/pdf",
        category=FileCategory.PDF,
        provenance=provenance,
    )


def excel_upload(data: bytes = b"sheet-bytes", name: str = "budget.xlsx", mime: str = XLSX):
    return UploadRequest(
        raw_bytes=data, original_name=name, declared_mime_type=mime, category=FileCategory.EXCEL
    )


def test_epoch_ms_is_exact():
    assert epoch_ms(FIXED_NOW) == 1700000000000
    assert epoch_ms(datetime(2024, 1, 1, 0, 0, 0, 123000, tzinfo=timezone.utc)) == 1704067200123


def test_encode_metadata_value_matches_uri_component_escaping():
    assert encode_metadata_value("https://example.com/a?b=c d") == (
        "https%3A%2F%2Fexample.com%2Fa%3Fb%3Dc%20d"
    )
    assert encode_metadata_value("报告 (final)!.pdf") == "%E6%8A%A5%E5%91%8A%20(final)!.pdf"


@pytest.mark.asyncio
async def test_put_pdf_stamps_and_stores(gateway, store, pdf_bytes):
    key = await gateway.put_pdf(pdf_upload(pdf_bytes, "报告 (final)#1.pdf"), "https://example.com/a")

    assert key == "pdf_files/1700000000000-____final__1.pdf"
    assert store.calls == [("put", key)]
    stored = store.buckets[BUCKET][key]
    assert stored.content_type == "application/pdf"
    assert stored.content_disposition == 'attachment; filename="____final__1.pdf"'
    assert stored.metadata == {
        "sourceLink": "https%3A%2F%2Fexample.com%2Fa",
        "originalName": encode_metadata_value("报告 (final)#1.pdf"),
        "uploadTimestamp": "1700000000000",
        "fileSize": str(len(pdf_bytes)),
    }
    assert unquote(stored.metadata["originalName"]) == "报告 (final)#1.pdf"

    info = read_provenance(stored.data)
    assert info.subject == "https://example.com/a"
    assert "source:https://example.com/a" in info.keywords
    assert f"upload:{FIXED_NOW.isoformat()}" in info.keywords


@pytest.mark.asyncio
async def test_put_pdf_falls_back_to_request_provenance(gateway, store, pdf_bytes):
    key = await gateway.put(pdf_upload(pdf_bytes, provenance="  https://example.com/b  "))
    stored = store.buckets[BUCKET][key]
    assert unquote(stored.metadata["sourceLink"]) == "  https://example.com/b  "
    assert read_provenance(stored.data).subject == "  https://example.com/b  "


@pytest.mark.asyncio
async def test_put_pdf_keeps_source_link_verbatim(gateway, store, pdf_bytes):
    key = await gateway.put_pdf(pdf_upload(pdf_bytes), "https://example.com/a ")

    stored = store.buckets[BUCKET][key]
    assert read_provenance(stored.data).subject == "https://example.com/a "
    assert unquote(stored.metadata["sourceLink"]) == "https://example.com/a "


@pytest.mark.asyncio
async def test_oversized_pdf_never_reaches_backend(store, pdf_bytes):
    gateway = StorageGateway(store, BUCKET, max_upload_mb=0.001)
    big = pdf_bytes + b"\0" * 2048

    with pytest.raises(SizeExceededError):
        await gateway.put_pdf(pdf_upload(big), "https://example.com/a")
    assert store.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("link", ["", "   ", None])
async def test_pdf_requires_source_link(gateway, store, pdf_bytes, link):
    with pytest.raises(MissingSourceLinkError) as info:
        await gateway.put_pdf(pdf_upload(pdf_bytes), link)
    assert isinstance(info.value, UploadValidationError)
    assert store.calls == []


@pytest.mark.asyncio
async def test_pdf_with_wrong_type_is_rejected(gateway, store, pdf_bytes):
    upload = pdf_upload(pdf_bytes).model_copy(update={"declared_mime_type": "text/plain"})
    with pytest.raises(InvalidTypeError):
        await gateway.put_pdf(upload, "https://example.com/a")
    assert store.calls == []


@pytest.mark.asyncio
async def test_metadata_failure_aborts_before_put(gateway, store):
    with pytest.raises(MetadataWriteError):
        await gateway.put_pdf(pdf_upload(b"%PDF-1.7 truncated"), "https://example.com/a")
    assert store.calls == []
    assert store.buckets.get(BUCKET, {}) == {}


@pytest.mark.asyncio
async def test_backend_put_failure_is_wrapped(gateway, store, pdf_bytes):
    store.failures["put"] = ObjectStoreError("AccessDenied", "Access Denied")

    with pytest.raises(StoreError) as info:
        await gateway.put_pdf(pdf_upload(pdf_bytes), "https://example.com/a")

    err = info.value
    assert err.operation == "upload"
    assert err.backend_code == "AccessDenied"
    assert err.backend_message == "Access Denied"
    assert isinstance(err.__cause__, ObjectStoreError)
    assert not err.is_not_found


@pytest.mark.asyncio
async def test_put_excel_passes_bytes_through(gateway, store):
    key = await gateway.put_excel(excel_upload(b"raw-xlsx"))

    assert key == "excel_sheets/1700000000000-budget.xlsx"
    stored = store.buckets[BUCKET][key]
    assert stored.data == b"raw-xlsx"
    assert stored.content_type == XLSX
    assert stored.metadata == {
        "originalName": "budget.xlsx",
        "uploadTimestamp": "1700000000000",
        "fileSize": "8",
    }


@pytest.mark.asyncio
async def test_put_excel_rejects_unknown_mime(gateway, store):
    with pytest.raises(InvalidTypeError):
        await gateway.put(excel_upload(mime="text/csv", name="data.csv"))
    assert store.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", "evil/../../secret", "pdf_files", "tmp/pdf_files/1-a.pdf"])
async def test_remove_refuses_foreign_keys(gateway, store, key):
    with pytest.raises(InvalidKeyError) as info:
        await gateway.remove(key)
    assert info.value.code == "invalid_key"
    assert store.calls_to("delete") == []


@pytest.mark.asyncio
async def test_remove_issues_exactly_one_delete(gateway, store):
    await gateway.remove("pdf_files/123-a.pdf")
    assert store.calls_to("delete") == ["pdf_files/123-a.pdf"]
    assert store.calls_to("head") == []


@pytest.mark.asyncio
async def test_remove_propagates_backend_failure(gateway, store):
    store.failures["delete"] = ObjectStoreError("InternalError", "boom")
    with pytest.raises(StoreError) as info:
        await gateway.remove("excel_sheets/1-a.xlsx")
    assert info.value.operation == "delete"


@pytest.mark.asyncio
async def test_list_files_merges_categories(gateway, store, pdf_bytes):
    pdf_key = await gateway.put_pdf(pdf_upload(pdf_bytes), "https://example.com/a")
    xlsx_key = await gateway.put_excel(excel_upload())
    await store.put(
        BUCKET, "pdf_files/stray.txt", b"x", content_type="text/plain",
        content_disposition="attachment", metadata={},
    )

    files = await gateway.list_files()

    assert [f.id for f in files] == [pdf_key, xlsx_key]
    assert files[0].category is FileCategory.PDF
    assert files[0].access_url == f"https://{BUCKET}.s3.amazonaws.com/{pdf_key}"
    assert sorted(store.calls_to("list")) == ["excel_sheets/", "pdf_files/"]


@pytest.mark.asyncio
async def test_list_files_fails_as_a_whole(gateway, store, pdf_bytes):
    await gateway.put_pdf(pdf_upload(pdf_bytes), "https://example.com/a")
    store.failures["excel_sheets/"] = ObjectStoreError("AccessDenied", "no list on prefix")

    with pytest.raises(StoreError) as info:
        await gateway.list_files()
    assert info.value.operation == "list"
    assert info.value.backend_code == "AccessDenied"


@pytest.mark.asyncio
async def test_list_failure_cancels_sibling_listing(gateway, store):
    store.delays["pdf_files/"] = 5
    store.failures["excel_sheets/"] = ObjectStoreError("SlowDown", "throttled")

    with pytest.raises(StoreError):
        await asyncio.wait_for(gateway.list_files(), timeout=2)
    await asyncio.sleep(0.01)
    assert store.cancelled == ["pdf_files/"]


@pytest.mark.asyncio
async def test_both_listings_failing_leaves_no_unretrieved_errors(gateway, store):
    store.failures["list"] = ObjectStoreError("AccessDenied", "denied")
    reported = []
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(lambda _loop, context: reported.append(context))
    try:
        with pytest.raises(StoreError):
            await gateway.list_files()
        await asyncio.sleep(0.01)
        gc.collect()
    finally:
        loop.set_exception_handler(None)

    assert sorted(store.calls_to("list")) == ["excel_sheets/", "pdf_files/"]
    assert not [c for c in reported if "never retrieved" in c.get("message", "")]


@pytest.mark.asyncio
async def test_list_timeout_is_a_store_error(store):
    gateway = StorageGateway(store, BUCKET, list_timeout=0.05)
    store.delays["excel_sheets/"] = 5

    with pytest.raises(StoreError) as info:
        await gateway.list_files()
    assert info.value.backend_code == "Timeout"


@pytest.mark.asyncio
async def test_list_respects_page_size(store):
    gateway = StorageGateway(store, BUCKET, list_max_keys=2)
    for i in range(5):
        await store.put(
            BUCKET, f"pdf_files/{i}-a.pdf", b"x", content_type="application/pdf",
            content_disposition="attachment", metadata={},
        )
    files = await gateway.list_files()
    assert len(files) == 2


@pytest.mark.asyncio
async def test_presign_uses_backend_when_capable():
    store = RecordingStore(supports_presign=True)
    gateway = StorageGateway(store, BUCKET)

    url = await gateway.presign("pdf_files/1-a.pdf", 60)

    assert gateway.presign_enabled
    assert url == f"https://signed.example/{BUCKET}/pdf_files/1-a.pdf?expires=60"
    assert store.calls_to("presign") == ["pdf_files/1-a.pdf"]


@pytest.mark.asyncio
async def test_presign_fallback_returns_public_url(store):
    gateway = StorageGateway(store, BUCKET)

    url = await gateway.presign("pdf_files/1-a.pdf")

    assert not gateway.presign_enabled
    assert url == f"https://{BUCKET}.s3.amazonaws.com/pdf_files/1-a.pdf"
    assert store.calls == []


@pytest.mark.asyncio
async def test_presign_disabled_by_configuration_skips_capable_backend():
    store = RecordingStore(supports_presign=True)
    gateway = StorageGateway(store, BUCKET, presign_enabled=False)

    url = await gateway.presign("excel_sheets/1-a.xlsx")

    assert url == gateway.public_url("excel_sheets/1-a.xlsx")
    assert store.calls == []


@pytest.mark.asyncio
async def test_head_metadata(gateway, store):
    key = await gateway.put_excel(excel_upload())
    assert (await gateway.head_metadata(key))["uploadTimestamp"] == "1700000000000"

    with pytest.raises(StoreError) as info:
        await gateway.head_metadata("excel_sheets/missing.xlsx")
    assert info.value.is_not_found
    assert info.value.operation == "head"


def test_gateway_requires_bucket(store):
    with pytest.raises(ValueError):
        StorageGateway(store, "")


@pytest.mark.asyncio
async def test_custom_public_url_template(store):
    gateway = StorageGateway(
        store, "docs", public_url_template="https://acct.blob.core.windows.net/{bucket}/{key}"
    )
    assert gateway.public_url("pdf_files/1-a.pdf") == (
        "https://acct.blob.core.windows.net/docs/pdf_files/1-a.pdf"
    )
    assert await gateway.presign("pdf_files/1-a.pdf") == gateway.public_url("pdf_files/1-a.pdf")


def test_list_entries_are_object_entries():
    entry = ObjectEntry("pdf_files/1-a.pdf")
    assert entry.size is None and entry.last_modified is None
