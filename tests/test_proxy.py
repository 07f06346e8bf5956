"""Tests for the authenticated reverse proxy."""

import json

import httpx
import pytest
from starlette.datastructures import Headers

from employee_portal_bff.proxy import (
    ApiFailure,
    ApiSuccess,
    build_upstream_headers,
    decode_api_result,
    resolve_origin,
    rewrite_path,
)

SECRET = "super-secret-key"
UPSTREAM_LIST = "https://hr.example.test/api/FreelanceAbsensi/GetList"


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/api/freelance/FreelanceAbsensi/GetList", "/FreelanceAbsensi/GetList"),
        ("/api/freelance/FreelanceProfile/GetDetail", "/FreelanceProfile/GetDetail"),
        ("/api/freelance", "/"),
        ("/api/freelancer/Other", "/api/freelancer/Other"),
        ("/elsewhere", "/elsewhere"),
    ],
)
def test_rewrite_path_strips_only_the_proxy_prefix(path, expected):
    assert rewrite_path(path, "/api/freelance") == expected


def test_resolve_origin_uses_api_base_scheme_and_host():
    assert resolve_origin("https://hr.example.test/api", "https://fallback.test") == "https://hr.example.test"
    assert resolve_origin("http://10.0.0.5:8080/api/", "https://fallback.test") == "http://10.0.0.5:8080"


@pytest.mark.parametrize("api_base", ["", "not a url", "ftp://files.example.test", "http://[broken"])
def test_resolve_origin_falls_back_for_malformed_base(api_base):
    assert resolve_origin(api_base, "https://api.laskarbuah.com") == "https://api.laskarbuah.com"


def test_build_upstream_headers_injects_secret_and_drops_other_inbound_headers(settings):
    inbound = Headers({
        "content-type": "multipart/form-data; boundary=x",
        "authorization": "Bearer browser-token",
        "cookie": "session_id=abc",
        "x-custom": "nope",
        "accept-language": "id-ID",
    })

    headers = build_upstream_headers(inbound, settings)

    assert headers["X-Portal-Key"] == SECRET
    assert headers["Content-Type"] == "multipart/form-data; boundary=x"
    assert headers["Authorization"] == "Bearer browser-token"
    assert headers["Origin"] == "https://hr.example.test"
    assert headers["Referer"] == "https://hr.example.test/"
    assert headers["Host"] == "hr.example.test"
    lowered = {name.lower() for name in headers}
    assert "cookie" not in lowered
    assert "x-custom" not in lowered
    assert "accept-language" not in lowered


def test_build_upstream_headers_prefers_inbound_authorization_over_session_token(settings):
    headers = build_upstream_headers(Headers({"authorization": "Bearer from-browser"}), settings, bearer="from-session")
    assert headers["Authorization"] == "Bearer from-browser"

    headers = build_upstream_headers(Headers({}), settings, bearer="from-session")
    assert headers["Authorization"] == "Bearer from-session"
    assert headers["Content-Type"] == "application/json"

    headers = build_upstream_headers(Headers({}), settings)
    assert "Authorization" not in headers


def test_build_upstream_headers_with_malformed_base_uses_fallback_origin(settings):
    broken = settings.model_copy(update={"API_BASE": "::::"})
    headers = build_upstream_headers(Headers({}), broken)
    assert headers["Origin"] == "https://api.laskarbuah.com"
    assert headers["Host"] == "api.laskarbuah.com"
    assert headers["X-Portal-Key"] == SECRET


def test_proxy_forwards_path_query_and_secret(client, upstream):
    upstream.respond("GET", UPSTREAM_LIST, json={"success": True, "data": [{"id_absen": 1}]})

    response = client.get(
        "/api/freelance/FreelanceAbsensi/GetList",
        params={"id_freelance": "7"},
        headers={"Authorization": "Bearer tok-abc", "X-Tracking": "drop-me"},
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "data": [{"id_absen": 1}]}

    (sent,) = upstream.calls_to(UPSTREAM_LIST)
    assert sent.method == "GET"
    assert sent.url.path == "/api/FreelanceAbsensi/GetList"
    assert sent.url.params["id_freelance"] == "7"
    assert sent.headers["X-Portal-Key"] == SECRET
    assert sent.headers["Authorization"] == "Bearer tok-abc"
    assert "x-tracking" not in sent.headers

    assert SECRET not in response.text
    assert all(SECRET not in value for value in response.headers.values())


@pytest.mark.parametrize(
    "inbound,upstream_raw_path",
    [
        ("/api/freelance/Ctl/a%3Fid_freelance=99", b"/api/Ctl/a%3Fid_freelance=99"),
        ("/api/freelance/Ctl/x%23frag", b"/api/Ctl/x%23frag"),
        ("/api/freelance/Ctl/dir%2Ffile", b"/api/Ctl/dir%2Ffile"),
    ],
)
def test_proxy_keeps_percent_encoded_path_segments(client, upstream, inbound, upstream_raw_path):
    response = client.get(inbound)

    assert response.status_code == 404
    sent = upstream.requests[-1]
    assert sent.url.raw_path == upstream_raw_path
    assert sent.url.query == b""


def test_proxy_relays_body_and_method_verbatim(client, upstream):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["content_type"] = request.headers["content-type"]
        return httpx.Response(201, json={"success": True, "data": {"saved": True}}, headers={"X-Upstream": "1"})

    upstream.on("POST", "https://hr.example.test/api/FreelanceAbsensi/SetAbsen", handler)

    payload = {"id_absen": 3, "foto": "https://portal-photos.s3.ap-southeast-3.amazonaws.com/attendance/x.jpg",
               "map": "-6.2,106.8", "id_freelance": 7}
    response = client.post("/api/freelance/FreelanceAbsensi/SetAbsen", json=payload)

    assert response.status_code == 201
    assert response.headers["X-Upstream"] == "1"
    assert seen["body"] == payload
    assert seen["content_type"] == "application/json"


def test_proxy_passes_upstream_errors_through_unchanged(client, upstream):
    upstream.respond("GET", UPSTREAM_LIST, status_code=500, json={"success": False, "message": "Database down"})

    response = client.get("/api/freelance/FreelanceAbsensi/GetList")

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Database down"}
    assert len(upstream.calls_to(UPSTREAM_LIST)) == 1


def test_proxy_does_not_relay_a_header_named_like_the_secret(client, upstream):
    upstream.respond("GET", UPSTREAM_LIST, json=[], headers={"X-Portal-Key": SECRET})

    response = client.get("/api/freelance/FreelanceAbsensi/GetList")

    assert response.status_code == 200
    assert "x-portal-key" not in response.headers


def test_proxy_unreachable_upstream_returns_503_without_secret(client, upstream):
    upstream.fail("GET", UPSTREAM_LIST)

    response = client.get("/api/freelance/FreelanceAbsensi/GetList")

    assert response.status_code == 503
    assert response.json()["detail"].startswith("Could not connect to upstream API")
    assert SECRET not in response.text


def test_proxy_attaches_session_token_when_browser_sends_none(client, upstream, login_ok):
    login_ok(token="session-token")
    client.post("/auth/login", json={"kode_user": "E001", "password": "correct"}, follow_redirects=False)
    upstream.respond("GET", "https://hr.example.test/api/FreelanceProfile/GetDetail", json={"success": True, "data": {}})

    client.get("/api/freelance/FreelanceProfile/GetDetail", params={"id_freelance": "7"})

    (sent,) = upstream.calls_to("https://hr.example.test/api/FreelanceProfile/GetDetail")
    assert sent.headers["Authorization"] == "Bearer session-token"


def test_decode_api_result_envelope_success():
    response = httpx.Response(200, json={"success": True, "data": {"id": 1}, "message": "ok"})
    assert decode_api_result(response) == ApiSuccess(data={"id": 1}, status_code=200, message="ok")


def test_decode_api_result_bare_array_is_success():
    response = httpx.Response(200, json=[{"id": 1}, {"id": 2}])
    assert decode_api_result(response) == ApiSuccess(data=[{"id": 1}, {"id": 2}], status_code=200, enveloped=False)


def test_decode_api_result_unsuccessful_envelope_is_failure():
    response = httpx.Response(200, json={"success": False, "message": "Akun nonaktif"})
    result = decode_api_result(response)
    assert isinstance(result, ApiFailure)
    assert result.message == "Akun nonaktif"
    assert result.status_code == 200


def test_decode_api_result_http_error_without_json():
    response = httpx.Response(401, text="Unauthorized")
    result = decode_api_result(response)
    assert isinstance(result, ApiFailure)
    assert result.status_code == 401
    assert result.message == "Unauthorized"
