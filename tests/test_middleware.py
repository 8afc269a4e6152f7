def test_rate_limit_returns_error_envelope(client):
    for _ in range(100):
        assert client.get("/").status_code == 200

    res = client.get("/")
    assert res.status_code == 429
    assert res.json() == {"success": False, "status": False, "error": "Too many requests, please try again later"}
    assert "Retry-After" in res.headers


def test_rate_limit_is_shared_across_routes(client):
    for _ in range(60):
        client.get("/")
    for _ in range(40):
        client.get("/api/v1/bootcamps")
    assert client.get("/api/v1/courses").status_code == 429


def test_security_headers(client):
    res = client.get("/")
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Frame-Options"] == "SAMEORIGIN"
    assert res.headers["Strict-Transport-Security"].startswith("max-age=")
    assert res.headers["Referrer-Policy"] == "no-referrer"


def test_security_headers_on_errors(client):
    res = client.get("/api/v1/bootcamps/not-an-id")
    assert res.status_code == 404
    assert res.headers["X-Content-Type-Options"] == "nosniff"
