#!/usr/bin/env python3
"""Standalone CLI to poke the forecasting backend the portal talks to.

Usage: run any of these from the project root:

  # Log in and show the profile (credentials from args or
  # PORTAL_CHECK_EMAIL / PORTAL_CHECK_PASSWORD)
  python check_backend.py me analyst@example.com secret

  # Upload history, newest first
  python check_backend.py history

  # Latest forecast series
  python check_backend.py forecast CAD

  # Latest saved liquidity ratios / USD exposure
  python check_backend.py liquidity
  python check_backend.py exposure

  # Full USD summary, collected page by page
  python check_backend.py summary 100

  # Full health check, tests all systems
  python check_backend.py health
"""

from __future__ import annotations

import json
import os
import sys
import time

# Ensure the src directory is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

from cashflow_portal.api_client import ApiError, PortalClient  # noqa: E402
from cashflow_portal.config import get_config  # noqa: E402
from cashflow_portal.numeric_input import format_amount  # noqa: E402
from cashflow_portal.report import summarize_usd  # noqa: E402
from cashflow_portal.session import SessionStore  # noqa: E402


def _header(title: str):
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}\n")


def _client(email: str | None = None, password: str | None = None) -> PortalClient:
    """Client with a fresh in-memory session, logged in when credentials exist."""
    client = PortalClient(SessionStore({}))
    email = email or os.environ.get("PORTAL_CHECK_EMAIL")
    password = password or os.environ.get("PORTAL_CHECK_PASSWORD")
    if email and password:
        client.login(email, password)
    return client


def cmd_me(email: str | None = None, password: str | None = None):
    """Log in and show the signed-in profile."""
    _header("Profile")
    try:
        user = _client(email, password).current_user()
    except ApiError as e:
        print(f"  ERROR: {e}")
        return
    print(f"  Email:  {user.email}")
    print(f"  Role:   {user.role.value}")
    print(f"  ID:     {user.id}")


def cmd_history():
    """List uploaded files, newest first."""
    _header("Upload History")
    try:
        files = _client().file_history()
    except ApiError as e:
        print(f"  ERROR: {e}")
        return
    if not files:
        print("  No files uploaded.")
        return
    print(f"  {'Uploaded':17s}  {'Status':11s}  {'Cur':4s}  File")
    print(f"  {'-'*17}  {'-'*11}  {'-'*4}  {'-'*30}")
    for f in files[:20]:
        print(
            f"  {f.upload_timestamp:%Y-%m-%d %H:%M}  {f.processing_status.value:11s}  "
            f"{(f.currency or '?'):4s}  {f.filename}"
        )
    print(f"\n  Total: {len(files)} file(s)")


def cmd_forecast(currency: str = "CAD"):
    """Show the latest forecast series for a currency."""
    _header(f"Latest Forecast: {currency.upper()}")
    try:
        points = _client().latest_forecast(currency)
    except ApiError as e:
        print(f"  ERROR: {e}")
        return
    if not points:
        print("  No forecast found.")
        return
    print(f"  {'Date':12s}  {'Forecasted Balance':>20s}  {'Actual Balance':>20s}")
    for p in points[:20]:
        print(f"  {p.date.isoformat():12s}  {format_amount(p.forecasted_balance):>20s}  {format_amount(p.actual_balance):>20s}")
    print(f"\n  Total: {len(points)} point(s)")


def cmd_liquidity():
    """Show the latest saved liquidity ratios."""
    _header("Latest Liquidity Ratios")
    try:
        saved = _client().latest_liquidity_ratio()
    except ApiError as e:
        print(f"  ERROR: {e}")
        return
    if saved is None:
        print("  Nothing saved yet.")
        return
    print(json.dumps(saved.model_dump(mode="json"), indent=2))


def cmd_exposure():
    """Show the latest saved USD exposure."""
    _header("Latest USD Exposure")
    try:
        saved = _client().latest_usd_exposure()
    except ApiError as e:
        print(f"  ERROR: {e}")
        return
    if saved is None:
        print("  Nothing saved yet.")
        return
    print(json.dumps(saved.model_dump(mode="json"), indent=2))


def cmd_summary(page_size: int | None = None):
    """Collect every USD summary page and show the trailing-year window."""
    page_size = page_size or get_config().report_page_size
    _header(f"USD Summary (page size {page_size})")
    t0 = time.time()
    try:
        points = _client().summary_all(page_size)
    except ApiError as e:
        print(f"  ERROR: {e}")
        return
    series = summarize_usd(points)
    print(f"  Collected {len(points)} row(s) in {time.time() - t0:.1f}s")
    print(f"  Trailing year ends {series.anchor_date or '?'}: {len(series.rows)} row(s)")
    for row in series.rows[:10]:
        print(f"    {row.reporting_date or '?':12s}  {format_amount(row.closing_balance):>20s}")


def cmd_health():
    """Full backend health check."""
    _header("Backend Health Check")
    checks = []

    print("  [1/4] Configuration...")
    cfg = get_config()
    print(f"    API base URL: {cfg.api_base_url}")
    print(f"    Timeout:      {cfg.request_timeout}s")
    checks.append(("Config", "PASS"))

    print("\n  [2/4] Login...")
    try:
        client = _client()
    except ApiError as e:
        print(f"    ERROR: {e}")
        checks.append(("Login", "FAIL"))
        client = PortalClient(SessionStore({}))
    else:
        if client.session.is_authenticated:
            print("    Token issued")
            checks.append(("Login", "PASS"))
        else:
            print("    No credentials (set PORTAL_CHECK_EMAIL / PORTAL_CHECK_PASSWORD)")
            checks.append(("Login", "SKIP"))

    print("\n  [3/4] Profile...")
    if client.session.is_authenticated:
        try:
            user = client.current_user()
            print(f"    {user.email} ({user.role.value})")
            checks.append(("Profile", "PASS"))
        except ApiError as e:
            print(f"    ERROR: {e}")
            checks.append(("Profile", "FAIL"))
    else:
        checks.append(("Profile", "SKIP"))

    print("\n  [4/4] USD summary first page...")
    if client.session.is_authenticated:
        try:
            t0 = time.time()
            page = client.summary_page(0, 10)
            print(f"    {len(page)} row(s) ({time.time() - t0:.1f}s)")
            checks.append(("Summary", "PASS" if page else "WARN"))
        except ApiError as e:
            print(f"    ERROR: {e}")
            checks.append(("Summary", "FAIL"))
    else:
        checks.append(("Summary", "SKIP"))

    print(f"\n  {'='*40}")
    print("  SUMMARY:")
    for name, status in checks:
        icon = {"PASS": "+", "FAIL": "X", "WARN": "!", "SKIP": "-"}[status]
        print(f"    [{icon}] {name}: {status}")
    print()


COMMANDS = {
    "me": (cmd_me, "[email] [password]"),
    "history": (cmd_history, ""),
    "forecast": (cmd_forecast, "[currency]"),
    "liquidity": (cmd_liquidity, ""),
    "exposure": (cmd_exposure, ""),
    "summary": (cmd_summary, "[page_size]"),
    "health": (cmd_health, ""),
}


def main():
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help", "help"):
        print("\nCash-Flow Portal: Backend Checker")
        print("=" * 36)
        print("\nUsage: python check_backend.py <command> [args]\n")
        print("Commands:")
        for cmd, (_, args) in COMMANDS.items():
            print(f"  {cmd:12s}  {args}")
        print()
        return

    cmd_name = sys.argv[1].lower()
    if cmd_name not in COMMANDS:
        print(f"Unknown command: {cmd_name}")
        print(f"Available: {', '.join(COMMANDS.keys())}")
        return

    fn, _ = COMMANDS[cmd_name]

    if cmd_name == "summary":
        fn(int(sys.argv[2]) if len(sys.argv) > 2 else None)
    else:
        fn(*sys.argv[2:])


if __name__ == "__main__":
    main()
