from grooming.schemas.notification import NotificationRequest


def test_health_returns_ok_and_request_id(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers.get("X-Request-ID")


def test_request_id_is_echoed_back(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_unknown_route_uses_error_shape(client):
    response = client.get("/does-not-exist")

    assert response.status_code == 404
    body = response.json()
    assert body["error"]["code"] == "http_404"
    assert "request_id" in body


def test_metrics_endpoint_exposes_domain_metrics(client, dispatcher):
    dispatcher.dispatch(NotificationRequest(type_key="scheduling.confirmation", scheduling_id="s-1", content="hi"))

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "text/plain" in response.headers.get("content-type", "")
    body = response.text
    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "notifications_dispatched_total" in body
    assert "scheduling_conflicts_total" in body
