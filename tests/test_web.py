import pytest

from ezlens.importer import BatchImporter
from ezlens.queries import QUERY_NAMES
from ezlens.web import PAYLOAD_KEYS


@pytest.fixture
def loaded(store, make_line, example_line):
    BatchImporter(store).import_lines([
        example_line,
        make_line(ts="15/Feb/2026:10:00:00 +0000", status="404", size="-"),
        make_line(ts="16/Feb/2026:10:00:00 +0000", url="http://b.org/q", country="DE"),
    ])
    return store


class TestHealthEndpoint:
    def test_health_reports_rows(self, client, loaded):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "ok", "rows": 3}


class TestQueryEndpoints:
    def test_lists_catalog(self, client):
        resp = client.get("/api/queries")
        assert resp.get_json()["queries"] == list(QUERY_NAMES)

    @pytest.mark.parametrize("name", QUERY_NAMES)
    def test_every_query_wrapped_in_payload_key(self, client, loaded, name):
        resp = client.get(f"/api/{name}")
        assert resp.status_code == 200
        assert list(resp.get_json()) == [PAYLOAD_KEYS[name]]

    def test_status_codes_body(self, client, loaded):
        resp = client.get("/api/status_codes")
        assert resp.get_json() == {
            "status": [{"status": 200, "n": 2}, {"status": 404, "n": 1}]
        }

    def test_time_bounds_passed_through(self, client, loaded):
        resp = client.get("/api/top_countries?start=2026-02-16T00:00:00Z")
        assert resp.get_json() == {"countries": [{"country": "DE", "n": 1}]}

    def test_heatmap_has_full_grid(self, client, loaded):
        data = client.get("/api/hourly_heatmap").get_json()["data"]
        assert len(data) == 168
        assert sum(cell["n"] for cell in data) == 3

    def test_unknown_query_is_404(self, client):
        resp = client.get("/api/drop_everything")
        assert resp.status_code == 404
        assert "error" in resp.get_json()

    def test_malformed_bound_is_400(self, client):
        resp = client.get("/api/top_hosts?start=not-a-date")
        assert resp.status_code == 400
        assert "not-a-date" in resp.get_json()["error"]

    def test_inverted_range_is_400(self, client):
        resp = client.get("/api/top_hosts?start=2026-02-16&end=2026-02-15")
        assert resp.status_code == 400

    def test_storage_failure_is_500(self, client, store):
        store.close()
        resp = client.get("/api/top_hosts")
        assert resp.status_code == 500
        assert "error" in resp.get_json()
