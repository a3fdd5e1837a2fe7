"""
Tests for the service status endpoints
"""


class TestHealth:

    def test_health_reports_services(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"cache": "healthy", "database": "healthy"}
        assert "cpu_percent" in data["system"]

    def test_cache_outage_is_reported(self, client, mock_cache):
        mock_cache.ahealth_check.return_value = False

        data = client.get("/health").json()
        assert data["services"]["cache"] == "unhealthy"

    def test_timing_headers(self, client):
        response = client.get("/")

        assert response.json()["message"] == "Quiz Proctor API"
        assert float(response.headers["X-Process-Time"]) >= 0
        assert response.headers["X-Request-ID"].startswith("req_")
