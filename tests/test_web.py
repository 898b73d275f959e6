"""Tests for the portal pages, with the backend replaced by an in-memory fake."""

import datetime as dt
import json
import logging
from unittest.mock import MagicMock

import pytest
import requests
from fastapi import Depends
from fastapi.testclient import TestClient

from cashflow_portal.api_client import ApiError, AuthExpired, PortalClient
from cashflow_portal.models import (
    AdminUserRecord,
    ForecastPoint,
    Role,
    SummaryPoint,
    User,
)
from cashflow_portal.pagination import collect_all
from cashflow_portal.session import SessionStore
from cashflow_portal.web import app, portal_client, session_store


ROLES = {"boss@example.com": Role.admin, "analyst@example.com": Role.user}


class FakeBackend:
    """Stands in for PortalClient; shared across the requests of one test."""

    def __init__(self):
        self.session: SessionStore | None = None
        self.email = None
        self.expired = False
        self.uploads = []
        self.saved_liquidity = None
        self.saved_exposure = None
        self.upload_failures = {}
        self.forecast = [
            ForecastPoint(date=dt.date(2024, 7, 1), forecasted_amount=10.0, forecasted_balance=110.0),
            ForecastPoint(date=dt.date(2024, 7, 2), forecasted_amount=-5.0, forecasted_balance=105.0),
        ]
        self.summary = [
            SummaryPoint(reporting_date=f"2024-05-{d:02d}", closing_balance=float(d)) for d in range(1, 26)
        ]
        self.created = []

    def _check(self):
        if self.expired or not self.session.token:
            self.session.invalidate()
            raise AuthExpired("Session expired or invalid. Please login again.", 401)

    def login(self, email, password):
        if email not in ROLES or password != "pw":
            raise AuthExpired("Incorrect email or password", 401)
        self.session.start(f"token-{email}")
        self.email = email
        return self.session.token

    def current_user(self):
        self._check()
        user = User(id="1", email=self.email, role=ROLES[self.email])
        self.session.remember_user(user)
        return user

    def list_users(self):
        self._check()
        return [AdminUserRecord(id=str(i), email=e, role=r.value) for i, (e, r) in enumerate(ROLES.items())]

    def create_user(self, email, password, role="user"):
        self._check()
        if email in ROLES:
            raise ApiError("User already registered", 400)
        self.created.append(email)
        return {"id": "9", "email": email}

    def upload_file(self, filename, content, *, file_type, currency, content_type=None):
        self._check()
        if filename in self.upload_failures:
            raise self.upload_failures[filename]
        self.uploads.append((filename, file_type, currency, content))
        return f"file-{len(self.uploads)}"

    def file_history(self):
        self._check()
        return []

    def generate_forecast(self, currency, anchor_date):
        self._check()
        return f"Forecast generation started for {currency} as of {anchor_date}."

    def latest_forecast(self, currency):
        self._check()
        return list(self.forecast)

    def save_liquidity_ratios(self, payload):
        self._check()
        self.saved_liquidity = payload
        return payload

    def latest_liquidity_ratio(self):
        self._check()
        raise ApiError("db down", 500)

    def save_usd_exposure(self, payload):
        self._check()
        self.saved_exposure = payload
        return payload

    def latest_usd_exposure(self):
        self._check()
        return None

    def summary_page(self, skip, limit):
        self._check()
        return self.summary[skip:skip + limit]

    def summary_all(self, page_size, cancel=None):
        return collect_all(self.summary_page, page_size, cancel=cancel)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    def fake_client(session: SessionStore = Depends(session_store)):
        backend.session = session
        return backend

    app.dependency_overrides[portal_client] = fake_client
    with TestClient(app, follow_redirects=False) as tc:
        yield tc
    app.dependency_overrides.clear()


def _login(client, email="analyst@example.com", password="pw"):
    return client.post("/login", data={"email": email, "password": password})


# ── Login & access control ────────────────────────────────────────────

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_admin_lands_on_admin_view(client):
    resp = _login(client, "boss@example.com")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/admin/dashboard"


def test_standard_user_lands_on_dashboard(client):
    resp = _login(client)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/dashboard"


def test_bad_credentials_show_backend_detail(client):
    resp = _login(client, password="wrong")
    assert resp.status_code == 400
    assert "Incorrect email or password" in resp.text


def test_pages_require_login(client):
    for path in ("/", "/dashboard", "/history", "/report", "/admin/dashboard"):
        resp = client.get(path)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login"


def test_non_admin_is_sent_to_dashboard(client):
    _login(client)
    resp = client.get("/admin/dashboard")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/dashboard"


def test_expired_session_redirects_and_stays_logged_out(client, backend):
    _login(client)
    backend.expired = True
    resp = client.get("/history")
    assert resp.headers["location"] == "/login"
    backend.expired = False
    assert client.get("/dashboard").headers["location"] == "/login"


def test_logout(client):
    _login(client)
    assert client.post("/logout").headers["location"] == "/login"
    assert client.get("/dashboard").headers["location"] == "/login"


# ── Dashboard ─────────────────────────────────────────────────────────

def test_single_upload(client, backend):
    _login(client)
    resp = client.post("/dashboard/upload", files={"file": ("daily.041", b"abc", "application/octet-stream")})
    assert resp.status_code == 200
    assert "File &#39;daily.041&#39; uploaded successfully" in resp.text
    assert backend.uploads == [("daily.041", "CAD_SUMMARY_RAW", "CAD", b"abc")]


def test_bulk_upload_keeps_going_after_failure(client, backend):
    _login(client)
    backend.upload_failures = {"2.041": ApiError("Internal Server Error", 500)}
    files = [("files", (f"{i}.041", b"x", "application/octet-stream")) for i in (1, 2, 3)]
    resp = client.post("/dashboard/bulk-upload", data={"currency": "USD"}, files=files)
    assert "Bulk upload finished. Successful: 2, Failed: 1." in resp.text
    assert [u[0] for u in backend.uploads] == ["1.041", "3.041"]


def test_bulk_upload_logs_progress(client, caplog):
    caplog.set_level(logging.INFO, logger="cashflow_portal.web")
    _login(client)
    files = [("files", (f"{i}.041", b"x", "application/octet-stream")) for i in (1, 2)]
    client.post("/dashboard/bulk-upload", data={"currency": "CAD"}, files=files)
    assert "Bulk upload 1/2: 1.041" in caplog.text
    assert "Bulk upload 2/2: 2.041" in caplog.text


def test_bulk_upload_needs_currency(client):
    _login(client)
    files = [("files", ("1.041", b"x", "application/octet-stream"))]
    resp = client.post("/dashboard/bulk-upload", data={"currency": ""}, files=files)
    assert "Please select currency and at least one file." in resp.text


def test_generate_forecast_needs_anchor_date(client):
    _login(client)
    assert "Please select a forecast anchor date." in client.post("/dashboard/forecast", data={}).text
    resp = client.post("/dashboard/forecast", data={"anchor_date": "2024-06-30"})
    assert "Forecast generation started for CAD as of 2024-06-30." in resp.text


# ── Forecasts ─────────────────────────────────────────────────────────

def test_forecast_view(client):
    _login(client)
    resp = client.get("/forecasts/view/cad")
    assert resp.status_code == 200
    assert "Latest CAD Forecast" in resp.text
    assert "110.00" in resp.text


def test_forecast_view_empty(client, backend):
    _login(client)
    backend.forecast = []
    assert "No forecast data found" in client.get("/forecasts/view/CAD").text


def test_forecast_csv(client):
    _login(client)
    resp = client.get("/forecasts/view/CAD/csv")
    assert resp.headers["content-type"].startswith("text/csv")
    assert "forecast_results_cad.csv" in resp.headers["content-disposition"]
    lines = resp.text.strip().splitlines()
    assert lines[0] == "Date,Forecasted Amount,Forecasted Cash Balance,Actual Cash Balance"
    assert lines[1] == "2024-07-01,10.0,110.0,"


# ── Line-item forms ───────────────────────────────────────────────────

def test_liquidity_calculates_and_saves(client, backend):
    _login(client)
    resp = client.post("/liquidity-ratios", data={
        "action": "calculate",
        "reporting_date": "2024-06-30",
        "value_1010": "100",
        "value_1100": "1,000",
        "value_2050": "200",
        "value_2180": "800",
    })
    assert resp.status_code == 200
    assert "10.00%" in resp.text      # statutory 100 / 1000
    assert "100.00%" in resp.text     # core (1000 - 200) / 800
    assert "125.00%" in resp.text     # total 1000 / 800
    assert "Data submitted successfully." in resp.text
    assert backend.saved_liquidity["reporting_date"] == "2024-06-30"
    assert backend.saved_liquidity["1100"] == 1000.0
    assert backend.saved_liquidity["1040"] is None


def test_liquidity_rejects_non_numeric_entry(client, backend):
    _login(client)
    resp = client.post("/liquidity-ratios", data={
        "action": "calculate",
        "reporting_date": "2024-06-30",
        "value_1010": "12a",
        "prev_1010": "12",
    })
    assert "Not a number: Cash" in resp.text
    assert 'name="value_1010" value="12"' in resp.text
    assert backend.saved_liquidity is None


def test_liquidity_requires_reporting_date(client, backend):
    _login(client)
    resp = client.post("/liquidity-ratios", data={"action": "calculate", "value_1010": "1"})
    assert "Please enter the Reporting Date." in resp.text
    assert backend.saved_liquidity is None


def test_liquidity_paste_fills_consecutive_fields(client):
    _login(client)
    resp = client.post("/liquidity-ratios", data={
        "action": "paste",
        "paste_text": "1,500\t2\n3\n4",
        "paste_start": "2180",
    })
    assert 'name="value_2180" value="1,500"' in resp.text
    assert 'name="value_2255" value="2"' in resp.text
    assert 'name="value_2295" value="3"' in resp.text


def test_liquidity_save_failure_still_shows_preview(client, backend):
    _login(client)

    def broken(payload):
        raise ApiError("Reporting date already exists", 409)

    backend.save_liquidity_ratios = broken
    resp = client.post("/liquidity-ratios", data={
        "action": "calculate", "reporting_date": "2024-06-30", "value_1100": "5", "value_2180": "10",
    })
    assert "50.00%" in resp.text
    assert "Reporting date already exists" in resp.text


def test_usd_exposure_short_position(client, backend):
    _login(client)
    resp = client.post("/usd-exposure", data={
        "action": "calculate",
        "reporting_date": "2024-06-30",
        "value_totalAssets": "1,000",
        "value_totalLiabilities": "-900",
        "value_totalCapital": "200",
    })
    assert "-100.00" in resp.text
    assert "Short" in resp.text
    assert backend.saved_exposure == {
        "reporting_date": "2024-06-30",
        "total_assets": 1000.0,
        "total_liabilities": -900.0,
        "total_capital": 200.0,
    }


# ── Summary & report ──────────────────────────────────────────────────

def test_summary_shows_first_rows_with_load_more(client):
    _login(client)
    resp = client.get("/summary-output-usd")
    assert "Showing 10 of 25" in resp.text
    assert "/summary-output-usd?show=20" in resp.text
    assert "<td>2024-05-25</td>" in resp.text
    assert "<td>2024-05-01</td>" not in resp.text


def test_summary_draws_closing_balance_chart(client):
    _login(client)
    resp = client.get("/summary-output-usd")
    assert 'id="usdChart"' in resp.text
    assert '"2024-05-01", "2024-05-02"' in resp.text
    assert "[1.0, 2.0, 3.0" in resp.text


def test_summary_load_more_until_exhausted(client):
    _login(client)
    assert "/summary-output-usd?show=25" in client.get("/summary-output-usd?show=20").text
    last = client.get("/summary-output-usd?show=25").text
    assert "Showing 25 of 25" in last
    assert "Load more" not in last


def test_report_shows_failed_sections(client):
    _login(client)
    resp = client.get("/report")
    assert resp.status_code == 200
    assert "Failed to fetch liquidity ratio: db down" in resp.text
    assert "No USD exposure saved yet." in resp.text


# ── Admin ─────────────────────────────────────────────────────────────

def test_admin_lists_users(client):
    _login(client, "boss@example.com")
    resp = client.get("/admin/dashboard")
    assert resp.status_code == 200
    assert "analyst@example.com" in resp.text


def test_admin_creates_user(client, backend):
    _login(client, "boss@example.com")
    resp = client.post("/admin/create-user", data={"email": "new@example.com", "password": "pw2"})
    assert "User new@example.com created successfully!" in resp.text
    assert backend.created == ["new@example.com"]


def test_admin_create_user_error(client):
    _login(client, "boss@example.com")
    resp = client.post("/admin/create-user", data={"email": "analyst@example.com", "password": "pw2"})
    assert "User already registered" in resp.text


# ── Real client over a faked HTTP session ─────────────────────────────

def _json_response(body):
    resp = requests.Response()
    resp.status_code = 200
    resp.reason = "OK"
    resp.encoding = "utf-8"
    resp._content = json.dumps(body).encode("utf-8")
    return resp


@pytest.fixture
def http_client():
    bodies = {
        ("POST", "/auth/login"): {"access_token": "tok"},
        ("GET", "/auth/users/me"): {"id": "u1", "email": "analyst@example.com"},
        ("GET", "/files/history"): [
            {"id": "1", "original_filename": "a.041", "upload_timestamp": None, "processing_status": "completed"},
        ],
        ("GET", "/files/forecast/latest"): [{"Date": None, "Forecasted Cash Balance": 1.0}],
        ("GET", "/liquidity-ratios/latest"): {},
        ("GET", "/usd-exposure/latest"): {},
        ("GET", "/summary-output/usd"): [],
    }

    def route(method, url, **kwargs):
        return _json_response(bodies[(method, url.removeprefix("http://backend.test"))])

    http = MagicMock(spec=requests.Session)
    http.request.side_effect = route

    def real_client(session: SessionStore = Depends(session_store)):
        return PortalClient(session, base_url="http://backend.test", timeout=5, http=http)

    app.dependency_overrides[portal_client] = real_client
    with TestClient(app, follow_redirects=False) as tc:
        yield tc
    app.dependency_overrides.clear()


def test_history_with_malformed_row_shows_inline_error(http_client):
    assert _login(http_client).headers["location"] == "/dashboard"
    resp = http_client.get("/history")
    assert resp.status_code == 200
    assert "GET /files/history returned malformed data: upload_timestamp:" in resp.text


def test_report_with_malformed_forecast_keeps_other_sections(http_client):
    _login(http_client)
    resp = http_client.get("/report")
    assert resp.status_code == 200
    assert "Failed to fetch CAD forecast: GET /files/forecast/latest returned malformed data: Date:" in resp.text
