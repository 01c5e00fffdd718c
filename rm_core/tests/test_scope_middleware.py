# rm_core/tests/test_scope_middleware.py
import json

import pytest
from django.test import RequestFactory

from rm_core.common.middleware import TenantFacilityScopeMiddleware
from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def _run(request):
    mw = TenantFacilityScopeMiddleware(get_response=lambda r: None)
    return mw.process_request(request)


def _body(resp):
    return json.loads(resp.content.decode("utf-8"))


def test_missing_scope_is_400_envelope(user):
    req = RequestFactory().get("/api/v1/referrals/")
    req.user = user

    resp = _run(req)
    assert resp.status_code == 400
    body = _body(resp)
    assert body["error"]["code"] == "validation_error"
    assert "Missing scope headers" in body["error"]["message"]
    assert body["error"]["request_id"]


def test_half_scope_is_400(user, tenant):
    req = RequestFactory().get("/api/v1/dispatches/", HTTP_X_TENANT_ID=str(tenant.id))
    req.user = user
    assert _run(req).status_code == 400


def test_invalid_scope_is_400(user):
    req = RequestFactory().get("/api/v1/referrals/", HTTP_X_TENANT_ID="not-a-uuid", HTTP_X_FACILITY_ID="nope")
    req.user = user

    body = _body(_run(req))
    assert "Invalid scope headers" in body["error"]["message"]


def test_non_member_is_403(user, other_tenant, other_facility):
    req = RequestFactory().get("/api/v1/referrals/", **scoped(other_tenant, other_facility))
    req.user = user

    resp = _run(req)
    assert resp.status_code == 403
    assert _body(resp)["error"]["code"] == "permission_denied"


def test_member_gets_scope_on_request(user, tenant, facility):
    req = RequestFactory().get("/api/v1/referrals/", **scoped(tenant, facility))
    req.user = user

    assert _run(req) is None
    assert req.tenant_id == tenant.id
    assert req.facility_id == facility.id


def test_me_and_auth_skip_scope(user):
    for path in ("/api/me/", "/api/v1/auth/login/"):
        req = RequestFactory().get(path)
        req.user = user
        assert _run(req) is None


def test_api_errors_carry_request_id(api_client, tenant, facility):
    res = api_client.get(
        "/api/v1/referrals/00000000-0000-0000-0000-000000000009/",
        **scoped(tenant, facility),
    )
    assert res.status_code == 404
    assert res.json()["error"]["request_id"] == res["X-Request-ID"]
