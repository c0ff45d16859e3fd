"""API integration tests for the Spend Parser."""

from fastapi.testclient import TestClient

HTTP_200_OK = 200
HTTP_401_UNAUTHORIZED = 401
HTTP_404_NOT_FOUND = 404
HTTP_422_UNPROCESSABLE = 422
HEADERS = {"X-User-Id": "user-1"}


def test_health(client: TestClient) -> None:
    """Test the /health endpoint returns status ok."""
    response = client.get("/health")
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
        raise AssertionError(msg)
    if response.json() != {"status": "ok"}:
        msg = f"Expected response {{'status': 'ok'}}, got {response.json()}"
        raise AssertionError(msg)


def test_scalar_docs(client: TestClient) -> None:
    """Test the /scalar endpoint returns OpenAPI or Swagger docs."""
    response = client.get("/scalar")
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
        raise AssertionError(msg)
    if not ("openapi" in response.text or "swagger" in response.text):
        msg = "Expected 'openapi' or 'swagger' in response text"
        raise AssertionError(msg)


def test_missing_user_header(client: TestClient) -> None:
    """Caller-scoped endpoints reject requests without an identity."""
    for path in ("/events/evt-1", "/transactions/recent", "/llm/budget"):
        response = client.get(path)
        if response.status_code != HTTP_401_UNAUTHORIZED:
            msg = f"{path}: expected {HTTP_401_UNAUTHORIZED}, got {response.status_code}"
            raise AssertionError(msg)


def test_unknown_event(client: TestClient) -> None:
    response = client.get("/events/does-not-exist", headers=HEADERS)
    if response.status_code != HTTP_404_NOT_FOUND:
        msg = f"Expected status {HTTP_404_NOT_FOUND}, got {response.status_code}"
        raise AssertionError(msg)


def test_ingest_rejects_empty_batch(client: TestClient) -> None:
    response = client.post("/events/ingest", json={"events": []}, headers=HEADERS)
    if response.status_code != HTTP_422_UNPROCESSABLE:
        msg = f"Expected status {HTTP_422_UNPROCESSABLE}, got {response.status_code}"
        raise AssertionError(msg)


def test_recent_transactions_limit_bounds(client: TestClient) -> None:
    response = client.get("/transactions/recent?limit=101", headers=HEADERS)
    if response.status_code != HTTP_422_UNPROCESSABLE:
        msg = f"Expected status {HTTP_422_UNPROCESSABLE} for limit=101, got {response.status_code}"
        raise AssertionError(msg)
    empty = client.get("/transactions/recent", headers=HEADERS).json()
    if empty != {"transactions": [], "pagination": {"limit": 20, "offset": 0, "hasMore": False}}:
        msg = f"Unexpected empty page {empty}"
        raise AssertionError(msg)


def test_llm_health(client: TestClient) -> None:
    response = client.get("/llm/health")
    if response.json() != {"primary": "mock", "providers": {"mock": True}}:
        msg = f"Unexpected provider health {response.json()}"
        raise AssertionError(msg)


def test_llm_budget(client: TestClient) -> None:
    body = client.get("/llm/budget", headers=HEADERS).json()
    if body["global"]["global_budget"] != 10.0 or body["user"]["user_budget"] != 0.5:
        msg = f"Unexpected budget stats {body}"
        raise AssertionError(msg)
    if body["user"]["user_spend"] != 0.0:
        msg = f"Expected no spend yet, got {body['user']}"
        raise AssertionError(msg)


def test_cache_stats(client: TestClient) -> None:
    response = client.get("/cache/stats")
    if response.json() != {"total_entries": 0, "total_hits": 0, "avg_hits_per_entry": 0.0}:
        msg = f"Unexpected cache stats {response.json()}"
        raise AssertionError(msg)


def test_summary_endpoints(client: TestClient) -> None:
    """No summary until one is computed; the computed week is then served as the latest."""
    missing = client.get("/summary/latest", headers=HEADERS)
    if missing.status_code != HTTP_404_NOT_FOUND:
        msg = f"Expected status {HTTP_404_NOT_FOUND} before any summary, got {missing.status_code}"
        raise AssertionError(msg)

    computed = client.post("/summary/compute", headers=HEADERS)
    if computed.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {computed.status_code}: {computed.text}"
        raise AssertionError(msg)
    body = computed.json()
    if body["weekStart"] != "2024-12-29T18:30:00.000Z" or body["totals"]["transactionCount"] != 0:
        msg = f"Unexpected summary {body}"
        raise AssertionError(msg)

    latest = client.get("/summary/latest", headers=HEADERS)
    if latest.status_code != HTTP_200_OK or latest.json() != body:
        msg = f"Expected the computed summary as latest, got {latest.json()}"
        raise AssertionError(msg)
    if client.post("/summary/compute").status_code != HTTP_401_UNAUTHORIZED:
        msg = "Expected the compute endpoint to require a caller identity"
        raise AssertionError(msg)
