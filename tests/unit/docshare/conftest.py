"""Shared fixtures for docshare unit tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from docshare.app.sharing.audit import InMemoryShareAuditEmitter
from docshare.app.sharing.passwords import configure_password_hasher
from docshare.app.sharing.repository import InMemoryDocumentShareRepository
from docshare.app.sharing.service import ShareService
from docshare.app.sharing.sessions import ShareSessionIssuer

from docshare_factories import SESSION_SECRET, FakeClock


@pytest.fixture(autouse=True)
def fast_password_hasher():
    """Cheap argon2 parameters so the suite stays fast."""
    configure_password_hasher(time_cost=1, memory_cost=8, parallelism=1)
    yield
    configure_password_hasher()


@pytest.fixture
def clock():
    # Real wall-clock start: share sessions are checked by PyJWT against it.
    return FakeClock(datetime.now(timezone.utc))


@pytest.fixture
def repo():
    return InMemoryDocumentShareRepository()


@pytest.fixture
def audit():
    return InMemoryShareAuditEmitter()


@pytest.fixture
def sessions():
    return ShareSessionIssuer(SESSION_SECRET)


@pytest.fixture
def service(repo, audit, sessions, clock):
    return ShareService(
        repo,
        audit=audit,
        sessions=sessions,
        frontend_url='https://docs.example.com',
        clock=clock,
    )
