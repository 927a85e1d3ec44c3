"""Deployment preflight for the dock-out service.

Usage:
    python scripts/db_preflight.py

Works from raw environment variables rather than ``dockout.config`` because a
misconfigured production Settings refuses to load, and reporting *why* is the
point of this script.
"""

from __future__ import annotations

import os
import sys
from typing import Mapping, NamedTuple

PLACEHOLDER_HOSTS = ("sap.example.com",)
TRUTHY = {"1", "true", "yes", "y", "on"}


class Check(NamedTuple):
    title: str
    ok: bool
    detail: str


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    return default if raw is None else raw.strip().lower() in TRUTHY


def _credentials(env: Mapping[str, str], system: str) -> Check:
    user_key, pass_key = f"{system}_USERNAME", f"{system}_PASSWORD"
    present = bool(env.get(user_key, "").strip()) and bool(env.get(pass_key, "").strip())
    return Check(f"{system} credentials are configured", present, f"{user_key}/{pass_key}")


def _endpoint(env: Mapping[str, str], name: str) -> Check:
    url = env.get(name, "")
    real = bool(url) and not any(host in url for host in PLACEHOLDER_HOSTS)
    return Check(f"{name} points at a real gateway", real, url or "<default placeholder>")


def collect_checks(env: Mapping[str, str]) -> list[Check]:
    environment = env.get("ENVIRONMENT", "").strip().lower()
    checks = [Check("ENVIRONMENT is explicitly set", bool(environment), environment or "<empty>")]
    if environment not in {"production", "prod"}:
        return checks

    database_url = env.get("DATABASE_URL", "sqlite:///./dockout.db")
    auto_create = _flag(env, "AUTO_CREATE_TABLES", True)
    verify_ssl = _flag(env, "UPSTREAM_VERIFY_SSL", True)
    checks += [
        Check("DATABASE_URL is not SQLite", "sqlite" not in database_url.lower(), database_url),
        Check("Alembic owns the schema", not auto_create, f"AUTO_CREATE_TABLES={auto_create}"),
        _credentials(env, "SAP"),
        _credentials(env, "TEG"),
        _endpoint(env, "SAP_STOCK_MOVE_URL"),
        _endpoint(env, "SAP_TOKEN_DETAILS_URL"),
        Check("Upstream TLS verification is enabled", verify_ssl, f"UPSTREAM_VERIFY_SSL={verify_ssl}"),
    ]
    return checks


def run(env: Mapping[str, str] = os.environ) -> int:
    checks = collect_checks(env)
    print("VEP Dockout Preflight")
    for check in checks:
        print(f"[{'PASS' if check.ok else 'FAIL'}] {check.title} ({check.detail})")

    failed = [check for check in checks if not check.ok]
    if failed:
        print(f"\n{len(failed)} check(s) failed; fix them before deploying.")
        return 1
    print("\nAll preflight checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(run())
