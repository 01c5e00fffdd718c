# rm_core/iam/tests/test_auth_and_me.py
import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def test_me_requires_auth():
    """
    A fresh APIClient: the api_client fixture is already authenticated.
    """
    c = APIClient()
    res = c.get("/api/me/")
    assert res.status_code in (401, 403)


def test_login_sets_cookies(user, settings):
    c = APIClient()
    res = c.post("/api/auth/login/", {"username": user.username, "password": "pass12345"}, format="json")
    assert res.status_code == 200

    access_cookie = settings.SIMPLE_JWT.get("AUTH_COOKIE", "rm_access")
    refresh_cookie = settings.SIMPLE_JWT.get("AUTH_COOKIE_REFRESH", "rm_refresh")

    assert access_cookie in res.cookies
    assert refresh_cookie in res.cookies


def test_login_rejects_bad_password(user):
    res = APIClient().post("/api/auth/login/", {"username": user.username, "password": "nope"}, format="json")
    assert res.status_code == 401


def test_me_returns_memberships_and_capabilities(api_client, user, facility):
    res = api_client.get("/api/me/")
    assert res.status_code == 200

    body = res.json()
    assert body["user"]["id"] == user.id
    assert [m["facility_id"] for m in body["memberships"]] == [str(facility.id)]
    assert body["active_scope"]["facility_id"] == str(facility.id)
    assert body["roles"] == ["ADMIN"]
    assert "referrals.accept" in body["capabilities"]


def test_me_reports_role_capabilities_for_scope(client_for, crew, tenant, facility):
    res = client_for(crew).get("/api/me/", **scoped(tenant, facility))
    assert res.status_code == 200
    assert res.data["roles"] == ["AMBULANCE_CREW"]
    assert "dispatches.transition" in res.data["capabilities"]
    assert "dispatches.create" not in res.data["capabilities"]


def test_scope_headers_block_non_member(user, other_tenant, other_facility):
    """
    A real JWT, so CookieOrHeaderJWTAuthentication runs and enforces scope.
    `user` has no membership at other_facility.
    """
    client = APIClient()
    access = str(RefreshToken.for_user(user).access_token)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

    res = client.get("/api/me/", **scoped(other_tenant, other_facility))
    assert res.status_code == 403


def test_scope_switch(api_client, tenant, facility, other_tenant, other_facility):
    ok = api_client.post(
        "/api/me/", {"tenant_id": str(tenant.id), "facility_id": str(facility.id)}, format="json"
    )
    assert ok.status_code == 200
    assert ok.data["active_scope"]["facility_id"] == str(facility.id)

    denied = api_client.post(
        "/api/me/", {"tenant_id": str(other_tenant.id), "facility_id": str(other_facility.id)}, format="json"
    )
    assert denied.status_code == 403
