def test_health_endpoint(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"
    assert r.headers.get("X-Request-ID")
    assert r.headers.get("X-Content-Type-Options") == "nosniff"


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


def test_metrics_and_root(client):
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "http_requests_total" in r.text
    r = client.get("/")
    assert r.json()["links"]["health"] == "/health"


def test_openapi_yaml(client):
    r = client.get("/openapi.yaml")
    assert r.status_code == 200
    assert "/bookings" in r.text
    assert "/operator/verify" in r.text
