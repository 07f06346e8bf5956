# src/employee_portal_bff/route_guard.py

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class GuardDecision:
    allow: bool
    redirect: Optional[str] = None


ALLOW = GuardDecision(allow=True)


def guard(
        token: Optional[str],
        path: str,
        login_path: str = "/login",
        home_path: str = "/",
        public_paths: Iterable[str] = ("/manifest.webmanifest", "/sw.js"),
) -> GuardDecision:
    """Decide whether a view navigation may proceed for the current session."""
    # PWA support files are fetched by the browser itself, with or without a session.
    if path in public_paths:
        return ALLOW

    if not token and path != login_path:
        return GuardDecision(allow=False, redirect=login_path)

    if token and path == login_path:
        return GuardDecision(allow=False, redirect=home_path)

    return ALLOW
