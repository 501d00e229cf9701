# src/client/client.py

from pathlib import Path
from typing import IO, Any

import httpx

from schema import ListFilesResponse, PresignResponse, UploadResult
from service.validation import (
    EXCEL_DROPZONE_RULES,
    PDF_DROPZONE_RULES,
    ValidationRules,
    validate,
)


class DocumentClientError(Exception):
    """An HTTP call failed. ``code`` is the server's error code when it sent one."""

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def _error_from_response(action: str, e: httpx.HTTPError) -> DocumentClientError:
    if isinstance(e, httpx.HTTPStatusError):
        code = None
        detail = e.response.text
        try:
            body = e.response.json()
            code = body.get("error")
            detail = body.get("detail", detail)
        except ValueError:
            pass
        return DocumentClientError(
            f"{action} failed: {detail}", code=code, status_code=e.response.status_code
        )
    return DocumentClientError(f"{action} failed: {e}")


def _read_payload(data: bytes | IO[bytes]) -> bytes:
    return data if isinstance(data, bytes) else data.read()


class DocumentClient:
    """Client for the document storage service."""

    def __init__(
        self,
        base_url: str = "http://0.0.0.0:8080",
        timeout: float | None = None,
        pdf_rules: ValidationRules = PDF_DROPZONE_RULES,
        excel_rules: ValidationRules = EXCEL_DROPZONE_RULES,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url (str): The base URL of the storage service.
            timeout (float, optional): The timeout for non-upload requests.
            pdf_rules / excel_rules: Checked locally before any upload is sent.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.pdf_rules = pdf_rules
        self.excel_rules = excel_rules

    # ---------- reads ----------
    def list_files(self, sort: str | None = None, order: str = "desc") -> ListFilesResponse:
        params = {"order": order}
        if sort:
            params["sort"] = sort
        try:
            r = httpx.get(
                f"{self.base_url}/files",
                params=params,
                timeout=self.timeout,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise _error_from_response("List files", e)
        return ListFilesResponse.model_validate(r.json())

    async def alist_files(self, sort: str | None = None, order: str = "desc") -> ListFilesResponse:
        params = {"order": order}
        if sort:
            params["sort"] = sort
        async with httpx.AsyncClient() as client:
            try:
                r = await client.get(
                    f"{self.base_url}/files",
                    params=params,
                    timeout=self.timeout,
                )
                r.raise_for_status()
            except httpx.HTTPError as e:
                raise _error_from_response("List files", e)
        return ListFilesResponse.model_validate(r.json())

    def presign(self, key: str, expires_in: int | None = None) -> PresignResponse:
        params = {"expires_in": expires_in} if expires_in else {}
        try:
            r = httpx.get(
                f"{self.base_url}/files/presign/{key}",
                params=params,
                timeout=self.timeout,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise _error_from_response("Presign", e)
        return PresignResponse.model_validate(r.json())

    def get_metadata(self, key: str) -> dict[str, str]:
        try:
            r = httpx.get(
                f"{self.base_url}/files/metadata/{key}",
                timeout=self.timeout,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise _error_from_response("Get metadata", e)
        return r.json()

    # ---------- writes ----------
    def delete_file(self, key: str) -> None:
        try:
            r = httpx.delete(
                f"{self.base_url}/files/{key}",
                timeout=self.timeout,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise _error_from_response("Delete", e)

    def _prepare(
        self, name: str, data: bytes | IO[bytes], mime: str, rules: ValidationRules
    ) -> tuple[str, tuple[str, bytes, str]]:
        payload = _read_payload(data)
        # dropzone-level checks run before anything goes over the wire
        validate(name, len(payload), mime, rules)
        return ("file", (Path(name).name, payload, mime))

    def upload_pdf(
        self, name: str, data: bytes | IO[bytes], source_link: str
    ) -> UploadResult:
        part = self._prepare(name, data, "application/pdf", self.pdf_rules)
        return self._upload("pdf", [part], {"source_link": source_link})

    def upload_excel(
        self,
        name: str,
        data: bytes | IO[bytes],
        mime: str = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ) -> UploadResult:
        part = self._prepare(name, data, mime, self.excel_rules)
        return self._upload("excel", [part], {})

    def _upload(self, kind: str, multipart: list, form: dict[str, Any]) -> UploadResult:
        try:
            r = httpx.post(
                f"{self.base_url}/files/{kind}",
                files=multipart,
                data=form,
                timeout=None,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise _error_from_response("Upload", e)
        return UploadResult.model_validate(r.json())

    async def aupload_pdf(
        self, name: str, data: bytes | IO[bytes], source_link: str
    ) -> UploadResult:
        part = self._prepare(name, data, "application/pdf", self.pdf_rules)
        return await self._aupload("pdf", [part], {"source_link": source_link})

    async def aupload_excel(
        self,
        name: str,
        data: bytes | IO[bytes],
        mime: str = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ) -> UploadResult:
        part = self._prepare(name, data, mime, self.excel_rules)
        return await self._aupload("excel", [part], {})

    async def _aupload(self, kind: str, multipart: list, form: dict[str, Any]) -> UploadResult:
        async with httpx.AsyncClient() as client:
            try:
                r = await client.post(
                    f"{self.base_url}/files/{kind}",
                    files=multipart,
                    data=form,
                    timeout=None,
                )
                r.raise_for_status()
            except httpx.HTTPError as e:
                raise _error_from_response("Upload", e)
        return UploadResult.model_validate(r.json())
