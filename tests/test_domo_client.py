"""Domo client tests using httpx.MockTransport."""
import csv
import io
import json
from datetime import date

import httpx
import pytest

from callsync.services.domo_client import DomoAuthError, DomoClient, DomoFetchError
from callsync.services.window import SyncWindow

from conftest import raw_row

API = "https://domo.test"
WINDOW = SyncWindow(date(2025, 12, 5), date(2025, 12, 6))
COLUMNS = ["VendorCallKey", "CallStartDateTime", "Name"]


def export_csv(rows, columns=COLUMNS):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(columns)
    for row in rows:
        writer.writerow([row.get(c, "") for c in columns])
    return buffer.getvalue()


class FakeDomo:
    """Routes requests the way the Domo API would answer them."""

    def __init__(self, rows=None, export=None):
        self.rows = rows or []
        self.export = export or ""
        self.token_calls = 0
        self.queries = []
        self.fail_with = {}

    def handler(self, request):
        path = request.url.path
        if path == "/oauth/token":
            self.token_calls += 1

        statuses = self.fail_with.get(path)
        if statuses:
            return httpx.Response(statuses.pop(0), text="nope")

        if path == "/oauth/token":
            assert request.url.params["grant_type"] == "client_credentials"
            assert request.headers["Authorization"].startswith("Basic ")
            return httpx.Response(200, json={"access_token": f"token-{self.token_calls}", "expires_in": 3600})

        assert request.headers["Authorization"].startswith("Bearer token-")
        if path == "/v1/datasets/query/execute/DS":
            sql = json.loads(request.content)["sql"]
            self.queries.append(sql)
            limit = int(sql.split("LIMIT ")[1].split()[0])
            offset = int(sql.split("OFFSET ")[1])
            page = self.rows[offset:offset + limit]
            return httpx.Response(200, json={
                "columns": COLUMNS,
                "rows": [[r[c] for c in COLUMNS] for r in page],
            })
        if path == "/v1/datasets/DS/data":
            assert request.url.params["includeHeader"] == "true"
            return httpx.Response(200, text=self.export)
        return httpx.Response(404)

    def client(self, **kwargs):
        http = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return DomoClient("id", "secret", "DS", api_url=API, client=http, **kwargs)


def rows(n, start="2025-12-05T10:00:00Z"):
    return [{"VendorCallKey": f"K{i}", "CallStartDateTime": start, "Name": "Alice"} for i in range(n)]


class TestQueryApi:
    @pytest.mark.asyncio
    async def test_fetch_dataset_builds_window_query(self):
        fake = FakeDomo(rows(2))
        records = await fake.client().fetch_dataset(WINDOW)

        assert records == rows(2)
        sql = fake.queries[0]
        assert "`CallStartDateTime` >= '2025-12-05'" in sql
        assert "`CallStartDateTime` < '2025-12-07'" in sql
        assert sql.endswith("LIMIT 10000 OFFSET 0")

    @pytest.mark.asyncio
    async def test_fetch_all_records_pages_until_short_page(self):
        fake = FakeDomo(rows(5))
        records = await fake.client(page_size=2).fetch_all_records(WINDOW)

        assert [r["VendorCallKey"] for r in records] == ["K0", "K1", "K2", "K3", "K4"]
        assert [q.split("OFFSET ")[1] for q in fake.queries] == ["0", "2", "4"]
        assert fake.token_calls == 1

    @pytest.mark.asyncio
    async def test_fetch_all_records_respects_limit(self):
        fake = FakeDomo(rows(10))
        records = await fake.client(page_size=4).fetch_all_records(WINDOW, limit=6)

        assert len(records) == 6
        assert len(fake.queries) == 2

    @pytest.mark.asyncio
    async def test_fetch_uses_query_strategy_when_asked(self):
        fake = FakeDomo(rows(1))
        records = await fake.client().fetch(WINDOW, full_export=False)
        assert len(records) == 1
        assert len(fake.queries) == 1


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_reauthenticates_once_on_401(self):
        fake = FakeDomo(rows(1))
        fake.fail_with["/v1/datasets/query/execute/DS"] = [401]

        records = await fake.client().fetch_dataset(WINDOW)

        assert len(records) == 1
        assert fake.token_calls == 2

    @pytest.mark.asyncio
    async def test_second_401_is_fatal(self):
        fake = FakeDomo(rows(1))
        fake.fail_with["/v1/datasets/query/execute/DS"] = [401, 401]

        with pytest.raises(DomoAuthError):
            await fake.client().fetch_dataset(WINDOW)
        assert fake.token_calls == 2

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        fake = FakeDomo()
        fake.fail_with["/oauth/token"] = [401]

        with pytest.raises(DomoAuthError, match="Authentication failed: 401"):
            await fake.client().authenticate()

    @pytest.mark.asyncio
    async def test_token_is_reused_until_expiry(self):
        fake = FakeDomo(rows(1))
        client = fake.client()
        await client.fetch_dataset(WINDOW)
        await client.fetch_dataset(WINDOW)
        assert fake.token_calls == 1

        client.token_expiry = 0
        await client.fetch_dataset(WINDOW)
        assert fake.token_calls == 2

    @pytest.mark.asyncio
    async def test_http_errors_are_not_retried(self):
        fake = FakeDomo(rows(1))
        fake.fail_with["/v1/datasets/query/execute/DS"] = [500, 500]

        with pytest.raises(DomoFetchError, match="500"):
            await fake.client().fetch_dataset(WINDOW)
        assert fake.fail_with["/v1/datasets/query/execute/DS"] == [500]


class TestFullExport:
    @pytest.mark.asyncio
    async def test_filters_export_by_window(self):
        export = export_csv([
            {"VendorCallKey": "IN-1", "CallStartDateTime": "2025-12-05T08:00:00Z", "Name": "Alice"},
            {"VendorCallKey": "OUT-1", "CallStartDateTime": "2025-12-04T23:59:59Z", "Name": "Bob"},
            {"VendorCallKey": "IN-2", "CallStartDateTime": "2025-12-06T23:00:00Z", "Name": ""},
            {"VendorCallKey": "BAD", "CallStartDateTime": "not a date", "Name": "Eve"},
        ])
        records = await FakeDomo(export=export).client().export_dataset_full(WINDOW)

        assert [r["VendorCallKey"] for r in records] == ["IN-1", "IN-2"]
        assert records[1]["Name"] is None

    @pytest.mark.asyncio
    async def test_conversation_json_and_multiline_fields_survive(self):
        row = raw_row(CallDispositionServicing="Line one\nLine two")
        columns = ["VendorCallKey", "CallStartDateTime", "CallDispositionServicing", "Conversation"]
        export = "\ufeff" + export_csv([row], columns)

        records = await FakeDomo(export=export).client().export_dataset_full(WINDOW)

        assert len(records) == 1
        assert records[0]["VendorCallKey"] == "CALL-1"
        assert records[0]["CallDispositionServicing"] == "Line one\nLine two"
        assert json.loads(records[0]["Conversation"]) == json.loads(row["Conversation"])

    @pytest.mark.asyncio
    async def test_carriage_returns_in_quoted_fields_survive_chunking(self):
        row = raw_row(CallDispositionServicing="Line one\r\nLine two\rLine three")
        columns = ["VendorCallKey", "CallStartDateTime", "CallDispositionServicing"]
        export = export_csv([row, raw_row("CALL-2")], columns)

        async def body():
            # Odd-sized chunks split lines and CRLF pairs mid-way
            for start in range(0, len(export), 7):
                yield export[start:start + 7].encode("utf-8")

        def handler(request):
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "token-1", "expires_in": 3600})
            return httpx.Response(200, content=body())

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = DomoClient("id", "secret", "DS", api_url=API, client=http)
        records = await client.export_dataset_full(WINDOW)

        assert [r["VendorCallKey"] for r in records] == ["CALL-1", "CALL-2"]
        assert records[0]["CallDispositionServicing"] == "Line one\r\nLine two\rLine three"
        assert records[1]["CallDispositionServicing"] == "Payment Inquiry"

    @pytest.mark.asyncio
    async def test_limit_stops_reading_the_stream(self):
        served = []
        lines = export_csv(rows(50)).splitlines(keepends=True)

        async def body():
            for line in lines:
                served.append(line)
                yield line.encode("utf-8")

        def handler(request):
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "token-1", "expires_in": 3600})
            return httpx.Response(200, content=body())

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = DomoClient("id", "secret", "DS", api_url=API, client=http)
        records = await client.fetch(WINDOW, limit=3, full_export=True)

        assert len(records) == 3
        assert len(served) < len(lines)

    @pytest.mark.asyncio
    async def test_export_http_error(self):
        fake = FakeDomo()
        fake.fail_with["/v1/datasets/DS/data"] = [503]

        with pytest.raises(DomoFetchError, match="503"):
            await fake.client().export_dataset_full(WINDOW)
