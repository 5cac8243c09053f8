"""Cloud Import Client.

Triggers a server-side import through the streaming endpoint and replays
its NDJSON progress frames locally, so a desktop or CLI caller sees the
same (status, percent) callbacks as an in-process run.

Architecture:
    - httpx streaming POST; bytes are fed to NdjsonDecoder as they arrive,
      whatever their boundaries
    - An error frame, an HTTP error status or a stream that ends without a
      done frame raises CloudImportError
"""

import logging
from typing import Optional

import httpx

from feedsync.domain.models import ImportResult
from feedsync.domain.ports import CloudImportError
from feedsync.domain.progress import NdjsonDecoder, ProgressCallback

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(600.0, connect=10.0)


class CloudImportClient:
    """Client for POST /api/imports/{source_id}/stream."""

    def __init__(
        self,
        base_url: str = "",
        client: Optional[httpx.Client] = None,
        token: Optional[str] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ):
        """Create a client.

        Parameters:
            base_url: Server root, e.g. "https://imports.example.org"
            client: Pre-built httpx.Client (tests pass a FastAPI TestClient)
            token: Bearer token sent with every request
            timeout: Request timeout; imports of large bundles take minutes
        """
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout, headers=headers)
        if client is not None and headers:
            self.client.headers.update(headers)

    def run(
        self,
        source_id: str,
        payload: bytes,
        file_name: str = "",
        user: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        """Upload a payload and follow the import to its result.

        Returns:
            ImportResult: The result carried by the final done frame

        Raises:
            CloudImportError: On transport failure, HTTP error, error frame or a
                stream without a result
        """
        decoder = NdjsonDecoder(on_progress)
        params = {"filename": file_name or source_id}
        if user:
            params["user"] = user

        try:
            with self.client.stream(
                "POST",
                f"/api/imports/{source_id}/stream",
                content=payload,
                params=params,
                headers={"Content-Type": "application/octet-stream"},
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    raise CloudImportError(
                        f"El servidor respondió {response.status_code}: {self._detail(response)}"
                    )
                for chunk in response.iter_bytes():
                    decoder.feed(chunk)
            decoder.close()
        except httpx.HTTPError as e:
            logger.error(f"Cloud import of '{source_id}' failed in transport: {e}", exc_info=True)
            raise CloudImportError(f"No fue posible comunicarse con el servidor: {e}") from e

        if decoder.result is None:
            raise CloudImportError("La importación terminó sin resultado")
        return ImportResult.model_validate(decoder.result)

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict) and "detail" in body:
            return str(body["detail"])
        return str(body)[:200]

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "CloudImportClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
