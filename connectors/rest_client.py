"""
REST record connection with retry logic for read calls.

Talks to a Salesforce-style REST API under /services/data/vXX.X/:
- query: paged query results, followed via nextRecordsUrl
- jobs/ingest: bulk ingest job lifecycle and CSV result sets
- composite/sobjects: synchronous collection writes

Only GET requests are retried (exponential backoff on timeouts, network
errors, 429 and 5xx). Writes are never repeated, since a repeated write
may apply twice.
"""

import asyncio
import io
import httpx
import pandas as pd
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Union
from core.config import settings
from core.exceptions import (
    APIResponseError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    ResourceNotFoundError
)
from models.base import Operation
from schemas.transfer import Record
from transfer.base import RecordConnection
import logging

logger = logging.getLogger(__name__)


class RestRecordConnection(RecordConnection):
    """
    RecordConnection over httpx with bearer token authentication.

    Attributes:
        instance_url: Base URL of the org, e.g. https://example.my.salesforce.com
        api_version: REST API version (default: settings.API_VERSION)
        max_retries: Attempts per GET request (default: settings.MAX_RETRIES)
        retry_delay: Initial retry delay in seconds (default: settings.RETRY_DELAY)
        timeout: Request timeout in seconds (default: settings.REQUEST_TIMEOUT)
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        label: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None
    ):
        self.instance_url = instance_url.rstrip("/")
        self.access_token = access_token
        self.api_version = api_version or settings.API_VERSION
        self.label = label or self.instance_url
        self.max_retries = max_retries or settings.MAX_RETRIES
        self.retry_delay = settings.RETRY_DELAY if retry_delay is None else retry_delay
        self.timeout = timeout or settings.REQUEST_TIMEOUT

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.timeout)

    @property
    def base_url(self) -> str:
        return f"{self.instance_url}/services/data/v{self.api_version}"

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "RestRecordConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _headers(self, content_type: str = "application/json") -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": content_type,
            "Accept": "application/json"
        }

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Union[bytes, AsyncIterable[bytes], None] = None,
        content_type: str = "application/json"
    ) -> httpx.Response:
        """
        Send one request; GET requests are retried with exponential backoff.

        Raises:
            AuthenticationError: HTTP 401/403
            ResourceNotFoundError: HTTP 404
            RateLimitError: HTTP 429 after all attempts
            NetworkError: Timeouts, network errors or 5xx after all attempts
            APIResponseError: Any other rejected request
        """
        attempts = self.max_retries if method == "GET" else 1
        headers = self._headers(content_type)

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            delay = self.retry_delay * (2 ** attempt)

            try:
                logger.debug(f"{method} {url} (attempt {attempt + 1}/{attempts})")
                response = await self.client.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json,
                    content=content,
                    timeout=self.timeout
                )

            except httpx.TimeoutException as e:
                if not last_attempt:
                    logger.warning(f"Request timeout. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                raise NetworkError(
                    f"Request timeout after {attempts} attempts",
                    context={"method": method, "url": url, "timeout": self.timeout, "retry_count": attempt + 1},
                    original_exception=e
                )

            except httpx.NetworkError as e:
                if not last_attempt:
                    logger.warning(f"Network error. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                raise NetworkError(
                    f"Network error after {attempts} attempts",
                    context={"method": method, "url": url, "retry_count": attempt + 1},
                    original_exception=e
                )

            if response.status_code in (401, 403):
                raise AuthenticationError(
                    f"Authentication failed for {url}",
                    context={"status_code": response.status_code, "method": method, "url": url}
                )

            if response.status_code == 404:
                raise ResourceNotFoundError(
                    f"Resource not found: {url}",
                    context={"status_code": 404, "method": method, "url": url}
                )

            if response.status_code == 429:
                retry_after = int(response.headers.get("Retry-After", delay))
                if not last_attempt:
                    logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    continue
                raise RateLimitError(
                    f"Rate limit exceeded for {url}",
                    context={"status_code": 429, "method": method, "url": url, "retry_count": attempt + 1},
                    retry_after=retry_after
                )

            if response.status_code >= 500:
                if not last_attempt:
                    logger.warning(
                        f"Server error {response.status_code}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{attempts})"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise NetworkError(
                    f"Server error {response.status_code} after {attempts} attempts",
                    context={
                        "status_code": response.status_code,
                        "method": method,
                        "url": url,
                        "retry_count": attempt + 1,
                        "response_body": response.text[:500]
                    }
                )

            if response.status_code >= 400:
                raise APIResponseError(
                    f"Request rejected with HTTP {response.status_code}",
                    context={
                        "status_code": response.status_code,
                        "method": method,
                        "url": url,
                        "response_body": response.text[:500]
                    }
                )

            return response

        raise APIResponseError("Max retries exceeded", context={"method": method, "url": url})

    async def _request_json(self, method: str, url: str, **kwargs) -> Any:
        response = await self._request(method, url, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise APIResponseError(
                "Response is not valid JSON",
                context={"method": method, "url": url, "response_body": response.text[:500]},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def query(self, query: str) -> AsyncIterator[List[Record]]:
        payload = await self._request_json("GET", f"{self.base_url}/query", params={"q": query})

        while True:
            yield payload.get("records", [])

            next_url = payload.get("nextRecordsUrl")
            if payload.get("done", True) or not next_url:
                break
            payload = await self._request_json("GET", f"{self.instance_url}{next_url}")

    # ------------------------------------------------------------------
    # Bulk ingest jobs
    # ------------------------------------------------------------------

    def _job_url(self, job_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/jobs/ingest"
        return f"{url}/{job_id}" if job_id else url

    async def create_ingest_job(
        self,
        object_name: str,
        operation: Operation,
        external_id_field: Optional[str] = None,
        line_ending: str = "LF"
    ) -> Dict[str, Any]:
        body = {
            "object": object_name,
            "operation": Operation(operation).value,
            "contentType": "CSV",
            "columnDelimiter": "COMMA",
            "lineEnding": line_ending
        }
        if external_id_field:
            body["externalIdFieldName"] = external_id_field

        return await self._request_json("POST", self._job_url(), json=body)

    async def upload_job_data(self, job_id: str, data: Union[bytes, AsyncIterable[bytes]]) -> None:
        await self._request(
            "PUT",
            f"{self._job_url(job_id)}/batches",
            content=data,
            content_type="text/csv"
        )

    async def close_ingest_job(self, job_id: str) -> Dict[str, Any]:
        return await self._request_json("PATCH", self._job_url(job_id), json={"state": "UploadComplete"})

    async def get_ingest_job(self, job_id: str) -> Dict[str, Any]:
        return await self._request_json("GET", self._job_url(job_id))

    async def get_successful_results(self, job_id: str) -> List[Dict[str, str]]:
        return await self._get_csv(f"{self._job_url(job_id)}/successfulResults/")

    async def get_failed_results(self, job_id: str) -> List[Dict[str, str]]:
        return await self._get_csv(f"{self._job_url(job_id)}/failedResults/")

    async def _get_csv(self, url: str) -> List[Dict[str, str]]:
        response = await self._request("GET", url)
        text = response.text
        if not text.strip():
            return []
        frame = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
        return frame.to_dict(orient="records")

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def save_records(
        self,
        object_name: str,
        operation: Operation,
        records: List[Record],
        external_id_field: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        operation = Operation(operation)
        url = f"{self.base_url}/composite/sobjects"

        if operation == Operation.DELETE:
            ids = ",".join(str(record.get("Id")) for record in records)
            payload = await self._request_json("DELETE", url, params={"ids": ids, "allOrNone": "false"})
            return [_normalize_result(result) for result in payload or []]

        body = {
            "allOrNone": False,
            "records": [_collection_record(object_name, record) for record in records]
        }

        if operation == Operation.INSERT:
            payload = await self._request_json("POST", url, json=body)
        elif operation == Operation.UPDATE:
            payload = await self._request_json("PATCH", url, json=body)
        else:
            if not external_id_field:
                raise APIResponseError(
                    "Upsert requires an external id field",
                    context={"object_name": object_name}
                )
            payload = await self._request_json("PATCH", f"{url}/{object_name}/{external_id_field}", json=body)

        return [_normalize_result(result) for result in payload or []]


def _collection_record(object_name: str, record: Record) -> Dict[str, Any]:
    """Empty cells are left out so they do not overwrite target values."""
    body: Dict[str, Any] = {"attributes": {"type": object_name}}
    for field, value in record.items():
        if value == "" or field == "attributes":
            continue
        body[field] = value
    return body


def _normalize_result(result: Dict[str, Any]) -> Dict[str, Any]:
    errors = []
    for error in result.get("errors") or []:
        if isinstance(error, dict):
            code = error.get("statusCode")
            message = error.get("message", "")
            errors.append(f"{code}: {message}" if code else message)
        else:
            errors.append(str(error))

    normalized = {
        "id": result.get("id"),
        "success": bool(result.get("success")),
        "errors": errors
    }
    if "created" in result:
        normalized["created"] = bool(result.get("created"))
    return normalized
