"""Tests for CloudImportClient, driven through the real API with a TestClient."""

from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from feedsync.adapters.cloud_client import CloudImportClient
from feedsync.api.dependencies import get_storage_adapter
from feedsync.api.main import app
from feedsync.domain.models import ImportResult
from feedsync.domain.ports import CloudImportError

SALUD_TOTAL_HEADER = "TipoDocumento\tDocumento\tNombre\tApellido1\tCiudad\tEstadoServicio"


def salud_total_payload(*ids):
    lines = [SALUD_TOTAL_HEADER]
    for id_ in ids:
        lines.append(f"CEDULA DE CIUDADANIA\t{id_}\tANA\tPEREZ\tCereté\tACTIVO")
    return ("\r\n".join(lines) + "\r\n").encode("cp1252")


@pytest.fixture
def api_client(storage):
    app.dependency_overrides[get_storage_adapter] = lambda: storage
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def cloud(api_client):
    return CloudImportClient(client=api_client)


class TestCloudImportClient:
    """Remote runs replayed through the NDJSON stream."""

    def test_run_returns_result_and_replays_progress(self, cloud, storage):
        seen = []

        result = cloud.run(
            "bd-salud-total",
            salud_total_payload("1001", "1002"),
            "BD_Salud_Total.txt",
            "auditoria",
            lambda status, pct: seen.append((status, pct)),
        )

        assert isinstance(result, ImportResult)
        assert result.success == 2
        assert result.total_processed == 2
        assert seen
        assert [pct for _, pct in seen] == sorted(pct for _, pct in seen)
        assert len(storage.fetch_rows("bd").value) == 2
        assert storage.list_import_history().value[0].usuario == "auditoria"

    def test_error_frame_raises(self, cloud):
        with pytest.raises(CloudImportError):
            cloud.run("bd-salud-total", b"no\theader\there\r\n", "bad.txt")

    def test_http_error_raises_with_detail(self, cloud):
        with pytest.raises(CloudImportError, match="404"):
            cloud.run("no-such-source", b"x")

    def test_transport_error_is_wrapped(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        transport = httpx.MockTransport(refuse)
        with CloudImportClient(client=httpx.Client(transport=transport, base_url="http://cloud")) as client:
            with pytest.raises(CloudImportError, match="comunicarse"):
                client.run("bd-neps", b"PK")

    def test_stream_without_result_raises(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, content=b'{"phase": "running", "status": "x", "pct": 5}\n')
        )
        client = CloudImportClient(client=httpx.Client(transport=transport, base_url="http://cloud"))
        with pytest.raises(CloudImportError, match="sin resultado"):
            client.run("bd-neps", b"PK")

    def test_sends_bearer_token_and_query(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(200, content=b'{"phase": "done", "pct": 100, "result": {"success": 1}}\n')

        client = CloudImportClient(
            client=httpx.Client(transport=httpx.MockTransport(handler), base_url="http://cloud"),
            token="abc",
        )
        result = client.run("bd-neps", b"PK", "BD_Neps.zip", "ops")

        request = captured["request"]
        assert request.headers["Authorization"] == "Bearer abc"
        assert request.url.path == "/api/imports/bd-neps/stream"
        assert request.url.params["filename"] == "BD_Neps.zip"
        assert request.url.params["user"] == "ops"
        assert result.success == 1

    def test_close_only_closes_owned_client(self):
        external = MagicMock(spec=httpx.Client)
        external.headers = httpx.Headers()
        CloudImportClient(client=external).close()
        external.close.assert_not_called()
