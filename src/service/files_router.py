## src/service/files_router.py

from __future__ import annotations

import logging
import mimetypes
from typing import Annotated, Literal

import filetype
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from schema.files import (
    FileCategory,
    ListFilesResponse,
    PresignResponse,
    UploadRequest,
    UploadResult,
)
from service.gateway import DEFAULT_PRESIGN_EXPIRES_IN, StorageGateway
from service.listing import SortField, sort_files

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])

SNIFF_BYTES = 8192  # read a small header; safe for large files
MAX_PRESIGN_SECONDS = 7 * 24 * 3600  # SigV4 ceiling

# not every platform mime table knows the spreadsheet formats
mimetypes.add_type("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", ".xlsx")
mimetypes.add_type("application/vnd.ms-excel", ".xls")
mimetypes.add_type("application/vnd.oasis.opendocument.spreadsheet", ".ods")


def sniff_mime_from_upload(uf: UploadFile) -> str:
    """
    Determine MIME type from file signature first, then fall back to filename and client header.
    Resets the file pointer back to 0 so the body can be read afterwards.
    """
    head = uf.file.read(SNIFF_BYTES)
    kind = filetype.guess(head)
    uf.file.seek(0)

    ext_mime = mimetypes.guess_type(uf.filename or "")[0]
    fallback_mime = uf.content_type or "application/octet-stream"

    if kind and kind.mime:
        sniffed = kind.mime
        # spreadsheets sit in ZIP or OLE containers; trust the extension there
        if (
            sniffed in {"application/zip", "application/octet-stream", "application/x-ole-storage"}
            and ext_mime
            and ext_mime.startswith(
                (
                    "application/vnd.openxmlformats-officedocument",
                    "application/vnd.oasis.opendocument",
                    "application/vnd.ms-excel",
                )
            )
        ):
            return ext_mime
        return sniffed

    if ext_mime:
        return ext_mime

    # final fallback to client-provided content_type (untrusted)
    return fallback_mime


def get_gateway(request: Request) -> StorageGateway:
    return request.app.state.gateway


Gateway = Annotated[StorageGateway, Depends(get_gateway)]


async def _to_upload_request(
    uf: UploadFile, category: FileCategory, provenance: str | None = None
) -> UploadRequest:
    mime = sniff_mime_from_upload(uf)
    data = await uf.read()
    return UploadRequest(
        raw_bytes=data,
        original_name=uf.filename or "file",
        declared_mime_type=mime,
        category=category,
        provenance=provenance,
    )


@router.post("/pdf", response_model=UploadResult, status_code=201)
async def upload_pdf(
    gateway: Gateway,
    file: UploadFile = File(...),
    source_link: str = Form(""),
):
    upload = await _to_upload_request(file, FileCategory.PDF, provenance=source_link)
    key = await gateway.put_pdf(upload, source_link)
    logger.info("Stored PDF", extra={"key": key, "size": upload.size_bytes})
    return UploadResult(key=key, category=FileCategory.PDF, access_url=gateway.public_url(key))


@router.post("/excel", response_model=UploadResult, status_code=201)
async def upload_excel(gateway: Gateway, file: UploadFile = File(...)):
    upload = await _to_upload_request(file, FileCategory.EXCEL)
    key = await gateway.put_excel(upload)
    logger.info("Stored spreadsheet", extra={"key": key, "size": upload.size_bytes})
    return UploadResult(key=key, category=FileCategory.EXCEL, access_url=gateway.public_url(key))


@router.get("", response_model=ListFilesResponse)
async def list_files(
    gateway: Gateway,
    sort: SortField | None = None,
    order: Literal["asc", "desc"] = "desc",
):
    items = await gateway.list_files()
    if sort:
        items = sort_files(items, sort, descending=(order == "desc"))
    return ListFilesResponse(items=items)


@router.get("/presign/{key:path}", response_model=PresignResponse)
async def presign_file(
    request: Request,
    gateway: Gateway,
    key: str,
    expires_in: int | None = Query(default=None, gt=0, le=MAX_PRESIGN_SECONDS),
):
    expires = expires_in or getattr(
        request.app.state, "presign_expires_in", DEFAULT_PRESIGN_EXPIRES_IN
    )
    url = await gateway.presign(key, expires)
    if not gateway.presign_enabled:
        return PresignResponse(url=url, presigned=False)
    return PresignResponse(url=url, presigned=True, expires_in=expires)


@router.get("/metadata/{key:path}", response_model=dict[str, str])
async def file_metadata(gateway: Gateway, key: str):
    return await gateway.head_metadata(key)


@router.delete("/{key:path}", status_code=204)
async def delete_file(gateway: Gateway, key: str):
    await gateway.remove(key)
    return
