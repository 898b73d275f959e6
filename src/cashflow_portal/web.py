"""Cash-Flow Portal: server-rendered front end for the forecasting backend.

Pages:
  - Login, with role-based landing (admin → user admin, others → dashboard)
  - Dashboard: daily file upload, bulk historical upload, forecast generation
  - Upload history, latest forecast chart/table (+ CSV download)
  - Liquidity ratio and USD exposure input forms with instant preview
  - USD summary output (trailing year) and the combined report
  - Admin: user list and user creation

Every page builds its own SessionStore and PortalClient for the request;
nothing is cached between requests.

Run:  python -m cashflow_portal.web
Open: http://localhost:{PORT}  (default 3000)
"""

from __future__ import annotations

import io
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Sequence

import pandas as pd
from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from cashflow_portal.api_client import ApiError, AuthExpired, NetworkError, PortalClient, attempt
from cashflow_portal.config import get_config
from cashflow_portal.models import LIQUIDITY_ITEMS, USD_EXPOSURE_ITEMS, LineItem, User
from cashflow_portal.numeric_input import (
    InputValidationError,
    distribute_paste,
    format_amount,
    parse_amount,
    to_canonical,
    to_display,
)
from cashflow_portal.pagination import CancelToken
from cashflow_portal.ratios import compute_liquidity_ratios, compute_usd_exposure, format_percent
from cashflow_portal.report import SummarySeries, build_report, load_usd_summary
from cashflow_portal.session import SessionStore
from cashflow_portal.uploads import CURRENCIES, PendingFile, upload_batch, upload_single

log = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
SUMMARY_ROWS_PER_LOAD = 10

NAV = [
    ("/dashboard", "Forecast"),
    ("/forecasts/view/CAD", "Latest Forecast"),
    ("/history", "History"),
    ("/liquidity-ratios", "Liquidity"),
    ("/usd-exposure", "USD Exposure"),
    ("/summary-output-usd", "Summary Output USD"),
    ("/report", "Report"),
]
ADMIN_NAV = [
    ("/admin/dashboard", "Users"),
    ("/admin/create-user", "Create User"),
]

app = FastAPI(title="Cash-Flow Portal")
app.add_middleware(
    SessionMiddleware,
    secret_key=get_config().session_secret,
    session_cookie="cashflow_session",
    max_age=get_config().session_max_age,
    same_site="lax",
)

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["amount"] = format_amount
templates.env.filters["display"] = to_display
templates.env.filters["percent"] = format_percent


# ═══════════════════════════════════════════════════════════════════════════
#  Session, client and access control
# ═══════════════════════════════════════════════════════════════════════════

class LoginRequired(Exception):
    """No usable session; the browser must go to the login page."""


class AdminRequired(Exception):
    """Signed in, but not as an admin."""


def session_store(request: Request) -> SessionStore:
    return SessionStore(request.session)


def portal_client(session: SessionStore = Depends(session_store)) -> PortalClient:
    return PortalClient(session)


def current_user(
    session: SessionStore = Depends(session_store),
    client: PortalClient = Depends(portal_client),
) -> User:
    """Confirm the session with the backend and return the signed-in user."""
    if not session.is_authenticated:
        raise LoginRequired()
    try:
        return client.current_user()
    except AuthExpired:
        raise
    except ApiError as exc:
        log.warning("Could not load profile, ending session: %s", exc)
        session.invalidate()
        raise LoginRequired() from exc


def admin_user(user: User = Depends(current_user)) -> User:
    if not user.is_admin:
        raise AdminRequired()
    return user


@app.exception_handler(AuthExpired)
async def auth_expired_handler(request: Request, exc: AuthExpired):
    return RedirectResponse("/login", status_code=303)


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    return RedirectResponse("/login", status_code=303)


@app.exception_handler(AdminRequired)
async def admin_required_handler(request: Request, exc: AdminRequired):
    return RedirectResponse("/dashboard", status_code=303)


@contextmanager
def view_scope() -> Iterator[CancelToken]:
    """Cancellation token that dies with the request that created it."""
    token = CancelToken()
    try:
        yield token
    finally:
        token.cancel()


def describe_error(exc: ApiError) -> str:
    if isinstance(exc, NetworkError):
        return f"An unexpected error occurred ({exc})."
    return str(exc) or "An unexpected error occurred."


def render(request: Request, name: str, user: User | None = None, status_code: int = 200, **context):
    context.update(
        user=user,
        nav=NAV,
        admin_nav=ADMIN_NAV if user is not None and user.is_admin else [],
        active_path=request.url.path,
    )
    return templates.TemplateResponse(request, name, context, status_code=status_code)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)


# ═══════════════════════════════════════════════════════════════════════════
#  Health & login
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/health")
def health():
    return JSONResponse({"status": "ok", "api_base_url": get_config().api_base_url})


@app.get("/")
def index(session: SessionStore = Depends(session_store)):
    return _redirect("/dashboard" if session.is_authenticated else "/login")


@app.get("/login")
def login_page(request: Request):
    return render(request, "login.html", email="", error=None)


@app.post("/login")
def login_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    session: SessionStore = Depends(session_store),
    client: PortalClient = Depends(portal_client),
):
    try:
        client.login(email.strip(), password)
    except ApiError as exc:
        session.invalidate()
        log.info("Login failed for %s: %s", email, exc)
        return render(request, "login.html", email=email, error=describe_error(exc), status_code=400)

    try:
        user = client.current_user()
    except AuthExpired as exc:
        return render(request, "login.html", email=email, error=describe_error(exc), status_code=400)
    except ApiError as exc:
        log.error("Profile fetch after login failed, continuing as standard user: %s", exc)
        return _redirect("/dashboard")

    return _redirect("/admin/dashboard" if user.is_admin else "/dashboard")


@app.post("/logout")
def logout(session: SessionStore = Depends(session_store)):
    session.invalidate()
    return _redirect("/login")


# ═══════════════════════════════════════════════════════════════════════════
#  Dashboard: uploads & forecast generation
# ═══════════════════════════════════════════════════════════════════════════

def _dashboard(request: Request, user: User, **context):
    context.setdefault("currencies", CURRENCIES)
    return render(request, "dashboard.html", user=user, **context)


@app.get("/dashboard")
def dashboard(request: Request, user: User = Depends(current_user)):
    return _dashboard(request, user)


@app.post("/dashboard/upload")
def dashboard_upload(
    request: Request,
    file: UploadFile | None = File(None),
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    if file is None or not file.filename:
        return _dashboard(request, user, upload_error="Please choose a file to upload.")
    pending = PendingFile(file.filename, file.file.read(), file.content_type)
    outcome = attempt(upload_single, client, pending, "CAD")
    if outcome.ok:
        return _dashboard(request, user, upload_message=outcome.value)
    return _dashboard(request, user, upload_error=describe_error(outcome.error))


def _log_upload_progress(index: int, total: int, filename: str) -> None:
    log.info("Bulk upload %d/%d: %s", index, total, filename)


@app.post("/dashboard/bulk-upload")
def dashboard_bulk_upload(
    request: Request,
    files: list[UploadFile] = File(default=[]),
    currency: str = Form(""),
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    pending = [PendingFile(f.filename or "", f.file.read(), f.content_type) for f in files]
    try:
        summary = upload_batch(client, pending, currency, progress=_log_upload_progress)
    except InputValidationError as exc:
        return _dashboard(request, user, bulk_error=str(exc))
    return _dashboard(request, user, bulk_summary=summary)


@app.post("/dashboard/forecast")
def dashboard_forecast(
    request: Request,
    anchor_date: str = Form(""),
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    if not anchor_date:
        return _dashboard(request, user, forecast_error="Please select a forecast anchor date.")
    outcome = attempt(client.generate_forecast, "CAD", anchor_date)
    if outcome.ok:
        return _dashboard(request, user, forecast_message=outcome.value)
    return _dashboard(request, user, forecast_error=describe_error(outcome.error), anchor_date=anchor_date)


# ═══════════════════════════════════════════════════════════════════════════
#  History & forecasts
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/history")
def history(
    request: Request,
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    outcome = attempt(client.file_history)
    return render(
        request, "history.html", user=user,
        files=outcome.value or [],
        error=None if outcome.ok else describe_error(outcome.error),
    )


@app.get("/forecasts/view/{currency}")
def forecast_view(
    request: Request,
    currency: str,
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    outcome = attempt(client.latest_forecast, currency)
    points = outcome.value or []
    error = None
    if not outcome.ok:
        error = describe_error(outcome.error)
    elif not points:
        error = "No forecast data found for the selected currency. Please generate a forecast first."
    chart = {
        "labels": [p.date.isoformat() for p in points],
        "forecasted": [p.forecasted_balance for p in points],
        "actual": [p.actual_balance for p in points],
        "has_actual": any(p.actual_balance is not None for p in points),
    }
    return render(
        request, "forecast.html", user=user,
        currency=currency.upper(), points=points, chart=chart, error=error,
    )


@app.get("/forecasts/view/{currency}/csv")
def forecast_csv(
    currency: str,
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    outcome = attempt(client.latest_forecast, currency)
    if not outcome.ok:
        return Response(describe_error(outcome.error), status_code=502, media_type="text/plain")
    frame = pd.DataFrame(
        [p.model_dump(by_alias=True, mode="json") for p in outcome.value],
        columns=["Date", "Forecasted Amount", "Forecasted Cash Balance", "Actual Cash Balance"],
    )
    buf = io.StringIO()
    frame.to_csv(buf, index=False)
    filename = f"forecast_results_{currency.lower()}.csv"
    return Response(
        content=buf.getvalue().encode("utf-8"),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Line-item forms (liquidity ratios, USD exposure)
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class LineItemForm:
    items: list[LineItem]
    reporting_date: str = ""
    action: str = "calculate"
    paste_text: str = ""
    paste_start: str = ""
    rejected: list[str] = field(default_factory=list)

    def values(self) -> dict[str, float | None]:
        return {item.code: parse_amount(item.raw_value) for item in self.items}


async def read_line_item_form(request: Request, catalog: Sequence[LineItem]) -> LineItemForm:
    """Canonicalise each posted field; a rejected edit keeps its previous value."""
    form = await request.form()
    items, rejected = [], []
    for item in catalog:
        display = str(form.get(f"value_{item.code}", ""))
        previous = str(form.get(f"prev_{item.code}", ""))
        raw = to_canonical(display, previous)
        if raw != display.replace(",", ""):
            rejected.append(item.label)
        items.append(item.model_copy(update={"raw_value": raw}))
    return LineItemForm(
        items=items,
        reporting_date=str(form.get("reporting_date", "")).strip(),
        action=str(form.get("action", "calculate")),
        paste_text=str(form.get("paste_text", "")),
        paste_start=str(form.get("paste_start", "")),
        rejected=rejected,
    )


def apply_paste(form: LineItemForm) -> None:
    codes = [item.code for item in form.items]
    start = codes.index(form.paste_start) if form.paste_start in codes else 0
    form.items = distribute_paste(form.paste_text, start, form.items)
    form.rejected = []


def validation_error(form: LineItemForm) -> str | None:
    if form.rejected:
        return "Not a number: " + ", ".join(form.rejected) + ". The previous value was kept."
    if not form.reporting_date:
        return "Please enter the Reporting Date."
    return None


@app.get("/liquidity-ratios")
def liquidity_page(request: Request, user: User = Depends(current_user)):
    return render(
        request, "line_items.html", user=user,
        title="Liquidity Data Input", action_url="/liquidity-ratios",
        submit_label="Calculate Ratios", form=LineItemForm(items=list(LIQUIDITY_ITEMS)),
    )


@app.post("/liquidity-ratios")
async def liquidity_submit(
    request: Request,
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    form = await read_line_item_form(request, LIQUIDITY_ITEMS)
    context = dict(
        title="Liquidity Data Input", action_url="/liquidity-ratios",
        submit_label="Calculate Ratios", form=form,
    )
    if form.action == "paste":
        apply_paste(form)
        return render(request, "line_items.html", user=user, **context)

    error = validation_error(form)
    if error:
        return render(request, "line_items.html", user=user, validation_error=error, **context)

    values = form.values()
    ratios = compute_liquidity_ratios(form.reporting_date, values)
    payload = {"reporting_date": form.reporting_date, **values}
    outcome = await run_in_threadpool(attempt, client.save_liquidity_ratios, payload)
    return render(
        request, "line_items.html", user=user,
        ratios=ratios,
        saved=outcome.ok,
        submit_error=None if outcome.ok else describe_error(outcome.error),
        **context,
    )


@app.get("/usd-exposure")
def usd_exposure_page(request: Request, user: User = Depends(current_user)):
    return render(
        request, "line_items.html", user=user,
        title="USD Exposure Input", action_url="/usd-exposure",
        submit_label="Calculate Exposure", form=LineItemForm(items=list(USD_EXPOSURE_ITEMS)),
    )


@app.post("/usd-exposure")
async def usd_exposure_submit(
    request: Request,
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    form = await read_line_item_form(request, USD_EXPOSURE_ITEMS)
    context = dict(
        title="USD Exposure Input", action_url="/usd-exposure",
        submit_label="Calculate Exposure", form=form,
    )
    if form.action == "paste":
        apply_paste(form)
        return render(request, "line_items.html", user=user, **context)

    error = validation_error(form)
    if error:
        return render(request, "line_items.html", user=user, validation_error=error, **context)

    values = form.values()
    exposure = compute_usd_exposure(form.reporting_date, values)
    payload = {
        "reporting_date": form.reporting_date,
        "total_assets": values["totalAssets"],
        "total_liabilities": values["totalLiabilities"],
        "total_capital": values["totalCapital"],
    }
    outcome = await run_in_threadpool(attempt, client.save_usd_exposure, payload)
    return render(
        request, "line_items.html", user=user,
        exposure=exposure,
        saved=outcome.ok,
        submit_error=None if outcome.ok else describe_error(outcome.error),
        **context,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  USD summary output & report
# ═══════════════════════════════════════════════════════════════════════════

def _usd_chart(series: SummarySeries | None) -> dict:
    points = series.chart if series else []
    return {"labels": [p.date for p in points], "balance": [p.balance for p in points]}


@app.get("/summary-output-usd")
def summary_output_usd(
    request: Request,
    show: int = SUMMARY_ROWS_PER_LOAD,
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    with view_scope() as cancel:
        outcome = attempt(load_usd_summary, client, get_config().summary_page_size, cancel)
    series = outcome.value
    rows = series.rows if series else []
    show = max(SUMMARY_ROWS_PER_LOAD, show)
    return render(
        request, "summary_output.html", user=user,
        series=series,
        usd_chart=_usd_chart(series),
        rows=rows[:show],
        total_rows=len(rows),
        next_show=min(show + SUMMARY_ROWS_PER_LOAD, len(rows)) if show < len(rows) else None,
        error=None if outcome.ok else describe_error(outcome.error),
    )


@app.get("/report")
def report(
    request: Request,
    user: User = Depends(current_user),
    client: PortalClient = Depends(portal_client),
):
    with view_scope() as cancel:
        data = build_report(client, cancel=cancel)
    forecast_chart = {
        "labels": [p.date.isoformat() for p in data.forecast],
        "forecasted": [p.forecasted_balance for p in data.forecast],
        "actual": [p.actual_balance for p in data.forecast],
    }
    return render(
        request, "report.html", user=user,
        report=data, forecast_chart=forecast_chart, usd_chart=_usd_chart(data.usd),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Admin
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/admin")
def admin_index():
    return _redirect("/admin/dashboard")


@app.get("/admin/dashboard")
def admin_dashboard(
    request: Request,
    user: User = Depends(admin_user),
    client: PortalClient = Depends(portal_client),
):
    outcome = attempt(client.list_users)
    return render(
        request, "admin_dashboard.html", user=user,
        users=outcome.value or [],
        error=None if outcome.ok else describe_error(outcome.error),
    )


@app.get("/admin/create-user")
def admin_create_user_page(request: Request, user: User = Depends(admin_user)):
    return render(request, "admin_create_user.html", user=user, email="", error=None, message=None)


@app.post("/admin/create-user")
def admin_create_user(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    user: User = Depends(admin_user),
    client: PortalClient = Depends(portal_client),
):
    email = email.strip()
    if not email or not password:
        return render(
            request, "admin_create_user.html", user=user,
            email=email, error="Email and password are required.", message=None,
        )
    outcome = attempt(client.create_user, email, password)
    if not outcome.ok:
        return render(
            request, "admin_create_user.html", user=user,
            email=email, error=describe_error(outcome.error), message=None,
        )
    created = outcome.value.get("email") or email
    log.info("Admin %s created user %s", user.email, created)
    return render(
        request, "admin_create_user.html", user=user,
        email="", error=None, message=f"User {created} created successfully!",
    )


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = get_config().port
    print(f"\n  Cash-Flow Portal → http://localhost:{port}\n")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


if __name__ == "__main__":
    main()
