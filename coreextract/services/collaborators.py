"""Clients for the external extraction and AI processing engines."""

from __future__ import annotations

import time
from functools import lru_cache
from typing import Any, BinaryIO, Protocol

import requests

from coreextract.core.config import settings
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import CollaboratorError
from coreextract.services.extraction_service import ExtractionPayload


class ExtractionEngine(Protocol):
    def extract(self, fileobj: BinaryIO, filename: str, mode: str) -> ExtractionPayload: ...


class ProcessingEngine(Protocol):
    def process(
        self,
        content: str,
        schema: dict[str, Any],
        config: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...


class HttpExtractionEngine:
    def __init__(self, base_url: str, timeout: float, session: requests.Session | None = None) -> None:
        self.url = f"{base_url.rstrip('/')}/extract"
        self.timeout = timeout
        self.session = session or requests.Session()

    def extract(self, fileobj: BinaryIO, filename: str, mode: str) -> ExtractionPayload:
        started = time.monotonic()
        try:
            response = self.session.post(
                self.url,
                files={"file": (filename, fileobj)},
                data={"mode": mode},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise CollaboratorError(ErrorCode.EXTRACTION_FAILED.value, str(exc)) from exc

        if not isinstance(data, dict) or data.get("success") is False:
            message = data.get("error") if isinstance(data, dict) else None
            raise CollaboratorError(
                ErrorCode.EXTRACTION_FAILED.value, message or "extraction engine returned no content"
            )

        return ExtractionPayload(
            text=data.get("text"),
            tables=data.get("tables"),
            markdown=data.get("markdown"),
            pages=data.get("pages"),
            page_count=data.get("page_count"),
            metadata=data.get("metadata") or {},
            elapsed_seconds=round(time.monotonic() - started, 3),
        )


class HttpProcessingEngine:
    def __init__(self, base_url: str, timeout: float, session: requests.Session | None = None) -> None:
        self.url = f"{base_url.rstrip('/')}/process"
        self.timeout = timeout
        self.session = session or requests.Session()

    def process(
        self,
        content: str,
        schema: dict[str, Any],
        config: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload = {"content": content, "schema": schema, "config": config or {}}
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise CollaboratorError(ErrorCode.PROCESSING_FAILED.value, str(exc)) from exc

        result = data.get("data") if isinstance(data, dict) else None
        if not isinstance(result, dict):
            message = data.get("error") if isinstance(data, dict) else None
            raise CollaboratorError(
                ErrorCode.PROCESSING_FAILED.value, message or "processing engine returned no result"
            )
        return result


@lru_cache(maxsize=1)
def get_extraction_engine() -> ExtractionEngine:
    return HttpExtractionEngine(
        settings.extraction_service_url, settings.external_request_timeout_seconds
    )


@lru_cache(maxsize=1)
def get_processing_engine() -> ProcessingEngine:
    return HttpProcessingEngine(
        settings.processing_service_url, settings.external_request_timeout_seconds
    )
