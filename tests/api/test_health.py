def test_health(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "variantly-api"}


def test_health_db(client):
    response = client.get("/api/v1/health/db")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "connected"}


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    data = response.json()
    assert data["app"] == "Variantly"
    assert data["version"] == "0.1.0"


def test_request_id_is_generated(client):
    response = client.get("/api/v1/health")

    assert response.headers["X-Request-Id"]
    assert float(response.headers["X-Process-Time"]) >= 0


def test_request_id_is_echoed(client):
    response = client.get("/api/v1/health", headers={"X-Request-Id": "req-123"})

    assert response.headers["X-Request-Id"] == "req-123"
