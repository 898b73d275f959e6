"""HTTP client for the cash-flow forecasting backend.

Endpoints used (all relative to ``Settings.api_base_url``):
  - POST /auth/login : form login → bearer token
  - GET  /auth/users/me : profile + role
  - POST /admin/create-user : admin: create a standard user
  - GET  /admin/users : admin: list users
  - POST /files/upload : multipart upload of a bank file
  - GET  /files/history : uploaded file metadata
  - POST /files/forecast/generate : queue a forecast run
  - GET  /files/forecast/latest : latest forecast series for a currency
  - POST /liquidity-ratios/, GET /liquidity-ratios/latest
  - POST /usd-exposure/,     GET /usd-exposure/latest
  - GET  /summary-output/usd : paginated USD balance summary

Every call sends the session's bearer token when there is one. Nothing is
retried: a failure is reported once, as an ``ApiError`` subclass, and the
caller decides what to show. A 401 tears the session down before raising.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, TypeVar

import requests
from pydantic import ValidationError

from cashflow_portal.config import get_config
from cashflow_portal.models import (
    AdminUserRecord,
    ForecastPoint,
    SavedLiquidityRatio,
    SavedUsdExposure,
    SummaryPoint,
    UploadedFileRecord,
    User,
)
from cashflow_portal.pagination import CancelToken, collect_all
from cashflow_portal.session import SessionStore

log = logging.getLogger(__name__)

T = TypeVar("T")

SESSION_EXPIRED_MESSAGE = "Session expired or invalid. Please login again."
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."


# ═══════════════════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════════════════

class ApiError(Exception):
    """The backend rejected a call, or could not be reached."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        return self.message


class AuthExpired(ApiError):
    """401 from the backend. The session has already been cleared."""


class NetworkError(ApiError):
    """No HTTP response at all (offline, DNS, refused, timed out)."""

    def __init__(self) -> None:
        super().__init__("network error")


def _error_detail(resp: requests.Response) -> str | None:
    """Pull a human-readable ``detail`` out of an error body, if any."""
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    detail = body.get("detail")
    if isinstance(detail, str) and detail.strip():
        return detail
    # FastAPI validation errors: [{"loc": [...], "msg": "...", ...}, ...]
    if isinstance(detail, list):
        msgs = [str(d.get("msg")) for d in detail if isinstance(d, dict) and d.get("msg")]
        if msgs:
            return "; ".join(msgs)
    return None


@contextmanager
def _payload(method: str, path: str) -> Iterator[None]:
    """Report a body that does not fit the expected model as an ``ApiError``."""
    try:
        yield
    except ValidationError as exc:
        err = exc.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", ())) or "body"
        message = f"{method} {path} returned malformed data: {field}: {err.get('msg')}"
        log.warning("%s", message)
        raise ApiError(message) from exc


# ═══════════════════════════════════════════════════════════════════════════
#  Result-or-error wrapper
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Outcome(Generic[T]):
    """The value of one backend call, or the error it failed with."""
    value: T | None = None
    error: ApiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def attempt(fn: Callable[..., T], *args: Any, **kwargs: Any) -> Outcome[T]:
    """Run ``fn`` and capture an ``ApiError`` as a failed Outcome.

    ``AuthExpired`` is not captured: the session is gone and the view has
    to stop and redirect, so it keeps propagating.
    """
    try:
        return Outcome(value=fn(*args, **kwargs))
    except AuthExpired:
        raise
    except ApiError as exc:
        return Outcome(error=exc)


# ═══════════════════════════════════════════════════════════════════════════
#  Client
# ═══════════════════════════════════════════════════════════════════════════

class PortalClient:
    """Thin, typed wrapper over the backend's REST endpoints.

    One instance per incoming request; it holds the request's
    ``SessionStore`` so a 401 anywhere invalidates that session.
    """

    def __init__(
        self,
        session: SessionStore,
        base_url: str | None = None,
        timeout: float | None = None,
        http: requests.Session | None = None,
    ):
        config = get_config()
        self.session = session
        self.base_url = (base_url or config.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.request_timeout
        self._http = http or requests.Session()

    # ── Raw request ───────────────────────────────────────────────────

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        json: Any = None,
        files: dict[str, Any] | None = None,
        unauthorized_message: str = SESSION_EXPIRED_MESSAGE,
    ) -> Any:
        """Issue one call and return the parsed JSON body (None if empty)."""
        method = method.upper()
        headers = {"Accept": "application/json"}
        token = self.session.token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            resp = self._http.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                params=params,
                data=data,
                json=json,
                files=files,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            log.error("%s %s: no response from backend: %s", method, path, exc)
            raise NetworkError() from exc

        if resp.status_code == 401:
            log.info("%s %s: 401, ending session", method, path)
            self.session.invalidate()
            raise AuthExpired(_error_detail(resp) or unauthorized_message, status=401)

        if not resp.ok:
            detail = _error_detail(resp)
            message = detail or f"{method} {path} failed: {resp.status_code} {resp.reason}"
            log.warning("%s %s rejected (%d): %s", method, path, resp.status_code, message)
            raise ApiError(message, status=resp.status_code)

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(f"{method} {path} returned a non-JSON body", status=resp.status_code) from exc

    # ── Auth ──────────────────────────────────────────────────────────

    def login(self, email: str, password: str) -> str:
        """Exchange credentials for a bearer token and start the session."""
        body = self.request(
            "POST", "/auth/login",
            data={"username": email, "password": password},
            unauthorized_message=INVALID_CREDENTIALS_MESSAGE,
        )
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise ApiError("Access token not found in login response")
        self.session.start(token)
        return token

    def current_user(self) -> User:
        body = self.request("GET", "/auth/users/me") or {}
        with _payload("GET", "/auth/users/me"):
            user = User.from_api(body)
        self.session.remember_user(user)
        return user

    # ── Admin ─────────────────────────────────────────────────────────

    def create_user(self, email: str, password: str, role: str = "user") -> dict[str, Any]:
        return self.request(
            "POST", "/admin/create-user",
            json={"email": email, "password": password, "user_metadata": {"role": role}},
        ) or {}

    def list_users(self) -> list[AdminUserRecord]:
        rows = self.request("GET", "/admin/users") or []
        with _payload("GET", "/admin/users"):
            return [AdminUserRecord.from_api(row) for row in rows]

    # ── Files & forecasts ─────────────────────────────────────────────

    def upload_file(
        self,
        filename: str,
        content: bytes,
        *,
        file_type: str,
        currency: str,
        content_type: str | None = None,
    ) -> str:
        """Upload one bank file; returns the backend's ``file_id``."""
        body = self.request(
            "POST", "/files/upload",
            data={"file_type": file_type, "currency": currency},
            files={"file": (filename, content, content_type or "application/octet-stream")},
        ) or {}
        return str(body.get("file_id", ""))

    def file_history(self) -> list[UploadedFileRecord]:
        """Upload history, newest first."""
        body = self.request("GET", "/files/history") or []
        with _payload("GET", "/files/history"):
            rows = [UploadedFileRecord.model_validate(r) for r in body]
        rows.sort(key=lambda r: r.upload_timestamp, reverse=True)
        return rows

    def generate_forecast(self, currency: str, anchor_date: str) -> str:
        body = self.request(
            "POST", "/files/forecast/generate",
            json={"currency": currency, "forecast_anchor_date": anchor_date},
        ) or {}
        return body.get("message") or f"Forecast generation started for {currency}."

    def latest_forecast(self, currency: str) -> list[ForecastPoint]:
        """Latest forecast series, ascending by date."""
        rows = self.request("GET", "/files/forecast/latest", params={"currency": currency.lower()}) or []
        with _payload("GET", "/files/forecast/latest"):
            points = [ForecastPoint.model_validate(r) for r in rows]
        points.sort(key=lambda p: p.date)
        return points

    # ── Liquidity ratios & USD exposure ───────────────────────────────

    def save_liquidity_ratios(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", "/liquidity-ratios/", json=payload) or {}

    def latest_liquidity_ratio(self) -> SavedLiquidityRatio | None:
        """Most recent saved ratio set, or None when nothing is saved yet."""
        try:
            body = self.request("GET", "/liquidity-ratios/latest")
        except ApiError as exc:
            if exc.status == 404:
                return None
            raise
        if not body:
            return None
        with _payload("GET", "/liquidity-ratios/latest"):
            return SavedLiquidityRatio.model_validate(body)

    def save_usd_exposure(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", "/usd-exposure/", json=payload) or {}

    def latest_usd_exposure(self) -> SavedUsdExposure | None:
        try:
            body = self.request("GET", "/usd-exposure/latest")
        except ApiError as exc:
            if exc.status == 404:
                return None
            raise
        if not body:
            return None
        with _payload("GET", "/usd-exposure/latest"):
            return SavedUsdExposure.model_validate(body)

    # ── USD summary output ────────────────────────────────────────────

    def summary_page(self, skip: int, limit: int) -> list[SummaryPoint]:
        rows = self.request("GET", "/summary-output/usd", params={"skip": skip, "limit": limit}) or []
        with _payload("GET", "/summary-output/usd"):
            return [SummaryPoint.model_validate(r) for r in rows]

    def summary_all(self, page_size: int, cancel: CancelToken | None = None) -> list[SummaryPoint]:
        """Every summary row, page by page, in backend order."""
        return collect_all(self.summary_page, page_size, cancel=cancel)
