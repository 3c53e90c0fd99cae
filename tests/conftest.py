"""Shared fixtures: an in-memory store and document factories."""

from datetime import datetime, timezone

import pytest

from ledgerguard.config import Settings
from ledgerguard.core.invariants import InvariantChecker, InvariantMode
from ledgerguard.services import build_services
from ledgerguard.store import Collections, InMemoryDocumentStore

NOW = datetime(2024, 2, 10, 12, 0, tzinfo=timezone.utc)
CYCLE_START = datetime(2024, 1, 1, tzinfo=timezone.utc)
CYCLE_END = datetime(2024, 1, 31, tzinfo=timezone.utc)
GIB = 1024 * 1024 * 1024


@pytest.fixture
def settings():
    return Settings(environment="test", _env_file=None)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def services(store, settings):
    """Services in permissive mode with a frozen clock."""
    return build_services(
        store,
        settings,
        InvariantChecker(mode=InvariantMode.PERMISSIVE),
        clock=lambda: NOW,
    )


@pytest.fixture
def make_account(store):
    def _make(account_id="ba-1", **fields):
        document = {
            "type": "ORG",
            "organization_id": "org-1",
            "user_id": None,
            "billing_status": "ACTIVE",
            "billing_cycle_start": CYCLE_START,
            "billing_cycle_end": CYCLE_END,
            "is_billing_cycle_locked": False,
            "billing_cycle_locked_at": None,
            "grace_period_end": None,
            "suspended_at": None,
            "stripe_customer_id": None,
        }
        document.update(fields)
        return store.seed(Collections.BILLING_ACCOUNTS, account_id, document)

    return _make


@pytest.fixture
def make_workspace(store):
    def _make(workspace_id="ws-1", organization_id="org-1", user_id=None):
        return store.seed(
            Collections.WORKSPACES,
            workspace_id,
            {"name": workspace_id, "organization_id": organization_id, "user_id": user_id},
        )

    return _make


@pytest.fixture
def make_event(store):
    counter = {"n": 0}

    def _make(resource_type, units, timestamp, workspace_id="ws-1", **fields):
        counter["n"] += 1
        document = {
            "workspace_id": workspace_id,
            "billing_entity_id": "org-1",
            "resource_type": resource_type,
            "units": units,
            "weighted_units": None,
            "timestamp": timestamp,
            "meta": None,
        }
        document.update(fields)
        return store.seed(Collections.USAGE_EVENTS, f"ev-{counter['n']}", document)

    return _make
