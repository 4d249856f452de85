"""Tests for in-process metrics."""

from message_board.metrics import (
    inc_http_request,
    inc_message_operation,
    observe_latency_ms,
    render_metrics,
    reset_metrics,
)


class TestMetrics:
    """Tests for counter rendering."""

    def setup_method(self):
        reset_metrics()

    def test_render_counters(self):
        inc_http_request("/messages", 200)
        inc_http_request("/messages", 200)
        inc_message_operation("create", "ok")

        text = render_metrics()

        assert 'http_requests_total{path="/messages",status="200"} 2' in text
        assert 'message_operations_total{op="create",result="ok"} 1' in text

    def test_latency_buckets_are_cumulative(self):
        observe_latency_ms(50)
        observe_latency_ms(300)
        observe_latency_ms(900)

        text = render_metrics()

        assert 'request_latency_ms_bucket{le="100"} 1' in text
        assert 'request_latency_ms_bucket{le="500"} 2' in text
        assert 'request_latency_ms_bucket{le="+Inf"} 3' in text
        assert "request_latency_ms_count 3" in text

    def test_reset(self):
        inc_message_operation("delete", "not_found")
        reset_metrics()

        assert "message_operations_total" not in render_metrics()

    def test_endpoint_reports_operations(self, client):
        client.post("/messages", json={"text": "hi"})
        client.post("/messages", json={})
        client.delete("/messages/999")

        text = client.get("/metrics").text

        assert 'message_operations_total{op="create",result="ok"} 1' in text
        assert 'message_operations_total{op="create",result="missing_field"} 1' in text
        assert 'message_operations_total{op="delete",result="not_found"} 1' in text
        assert 'status="404"' in text

    def test_read_only_field_has_own_label(self, client):
        client.post("/messages", json={"text": "hi", "created_at": "2000-01-01T00:00:00Z"})

        text = client.get("/metrics").text

        assert 'message_operations_total{op="create",result="read_only_field"} 1' in text
        assert 'result="missing_field"' not in text

    def test_unhandled_error_counts_latency(self, database_url, monkeypatch):
        """A request that blows up still lands in the latency histogram."""
        from fastapi.testclient import TestClient
        from message_board.config import settings
        from message_board.main import app, get_store

        def broken_store():
            raise RuntimeError("boom")

        monkeypatch.setattr(settings, "DATABASE_URL", database_url)
        app.dependency_overrides[get_store] = broken_store
        try:
            with TestClient(app, raise_server_exceptions=False) as test_client:
                assert test_client.get("/messages").status_code == 500
                text = test_client.get("/metrics").text
        finally:
            app.dependency_overrides.clear()

        assert 'status="500"} 1' in text
        assert "request_latency_ms_count 1" in text
