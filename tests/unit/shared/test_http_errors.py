"""Tests for the exception-to-status mapping and the tenant header dependency."""

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from src.config import Role
from src.core import (
    ApplicationException,
    ModelResponseException,
    ModelTimeoutException,
    PayloadTooLargeException,
    PermissionDeniedException,
    QueueException,
    QuotaExceededException,
    ResourceNotFoundException,
    ServiceUnavailableException,
    ValidationException,
    VectorStoreException,
)
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    application_exception_handler,
    global_exception_handler,
    status_for,
)
from src.shared.api.tenant import TenantContext, get_tenant_context


# --- status mapping ---

@pytest.mark.parametrize("exc, expected", [
    (ValidationException("bad"), 400),
    (PermissionDeniedException("no"), 403),
    (QuotaExceededException("quota"), 403),
    (ResourceNotFoundException("Ticket", "x"), 404),
    (ModelTimeoutException("slow", 60), 408),
    (PayloadTooLargeException("too big", "llama", "context length exceeded"), 413),
    (ModelResponseException("http://h", 404, "model not found", "llama"), 502),
    (ServiceUnavailableException("down", ["http://h"], "refused"), 503),
    (VectorStoreException("milvus down"), 503),
    (QueueException("redis down"), 503),
    (ApplicationException("other"), 500),
])
def test_status_for(exc, expected):
    assert status_for(exc) == expected


def build_app(exc):
    app = FastAPI()
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    @app.get("/boom")
    async def boom():
        raise exc

    @app.get("/whoami")
    async def whoami(ctx: TenantContext = Depends(get_tenant_context)):
        return {"tenant": ctx.tenant_id, "user": ctx.user_id, "role": ctx.role.value if ctx.role else None}

    return app


def test_payload_too_large_body_carries_hint():
    client = TestClient(build_app(PayloadTooLargeException("too big", "llama", "context length exceeded")))

    response = client.get("/boom", headers={"X-Correlation-ID": "corr-1"})

    assert response.status_code == 413
    body = response.json()
    assert body["error"] == "PayloadTooLargeException"
    assert body["hint"] == PayloadTooLargeException.hint
    assert body["details"]["model"] == "llama"
    assert body["correlation_id"] == "corr-1"
    assert response.headers["X-Correlation-ID"] == "corr-1"


def test_not_found_body():
    client = TestClient(build_app(ResourceNotFoundException("KnowledgeSource", "s1")))

    response = client.get("/boom")

    assert response.status_code == 404
    assert response.json()["detail"] == "KnowledgeSource with id 's1' not found"
    assert "hint" not in response.json()


def test_unexpected_error_is_a_generic_500():
    client = TestClient(build_app(RuntimeError("kaboom")), raise_server_exceptions=False)

    response = client.get("/boom")

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error"


# --- tenant headers ---

def test_tenant_headers_are_parsed():
    client = TestClient(build_app(RuntimeError()))

    response = client.get("/whoami", headers={
        "X-Tenant-ID": "t1", "X-User-ID": "u1", "X-User-Role": "admin",
    })

    assert response.status_code == 200
    assert response.json() == {"tenant": "t1", "user": "u1", "role": Role.ADMIN.value}


def test_missing_tenant_is_unauthorized():
    response = TestClient(build_app(RuntimeError())).get("/whoami")

    assert response.status_code == 401


def test_unknown_role_is_rejected():
    response = TestClient(build_app(RuntimeError())).get(
        "/whoami", headers={"X-Tenant-ID": "t1", "X-User-Role": "superuser"}
    )

    assert response.status_code == 400


def test_user_and_role_are_optional():
    response = TestClient(build_app(RuntimeError())).get("/whoami", headers={"X-Tenant-ID": "t1"})

    assert response.json() == {"tenant": "t1", "user": None, "role": None}
