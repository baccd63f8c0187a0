"""Shared fixtures: an in-memory stand-in for the Supabase client and wired services."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import copy
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from services.auth_service import AuthService
from services.completion_gateway import CompletionGateway, CompletionResult
from services.conversation_manager import ConversationManager
from services.transcript_store import TranscriptStore


class FakeResult:
    """Mimics the APIResponse returned by postgrest ``execute()``."""

    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Subset of the postgrest query builder used by TranscriptStore."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.operation = "select"
        self.payload = None
        self.filters = []
        self.orders = []
        self.max_rows = None

    def select(self, *columns, **kwargs):
        self.operation = "select"
        return self

    def insert(self, payload):
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.operation = "update"
        self.payload = payload
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, count):
        self.max_rows = count
        return self

    def execute(self):
        if (self.table, self.operation) in self.client.fail_on:
            raise ConnectionError(f"simulated outage on {self.operation} {self.table}")

        rows = self.client.tables[self.table]
        matching = [row for row in rows if all(row.get(col) == val for col, val in self.filters)]

        if self.operation == "insert":
            records = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.client.new_row(self.table, record) for record in records]
            rows.extend(inserted)
            return FakeResult(copy.deepcopy(inserted))

        if self.operation == "update":
            for row in matching:
                row.update(self.payload)
            return FakeResult(copy.deepcopy(matching))

        if self.operation == "delete":
            self.client.tables[self.table] = [row for row in rows if row not in matching]
            for child_table, foreign_key in self.client.CASCADES.get(self.table, ()):
                deleted_ids = {row["id"] for row in matching}
                self.client.tables[child_table] = [
                    row for row in self.client.tables[child_table] if row.get(foreign_key) not in deleted_ids
                ]
            return FakeResult(copy.deepcopy(matching))

        result = list(matching)
        for column, desc in reversed(self.orders):
            result.sort(key=lambda row: row[column], reverse=desc)
        if self.max_rows is not None:
            result = result[:self.max_rows]
        return FakeResult(copy.deepcopy(result))


class FakeSupabaseClient:
    """In-memory tables with identity columns and a ticking clock."""

    # Mirrors the ON DELETE CASCADE foreign keys of the migration
    CASCADES = {"conversations": [("messages", "conversation_id")]}

    def __init__(self):
        self.tables = defaultdict(list)
        self.next_ids = defaultdict(int)
        self.clock = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.fail_on = set()

    def table(self, name):
        return FakeQuery(self, name)

    def new_row(self, table, record):
        self.next_ids[table] += 1
        self.clock += timedelta(milliseconds=250)
        row = dict(record)
        row["id"] = self.next_ids[table]
        row.setdefault("created_at", self.clock.isoformat())
        return row


def completion(text="Model reply", model="llama-3.1-8b-instant"):
    return CompletionResult(
        text=text,
        model_used=model,
        tokens_input=10,
        tokens_output=5,
        latency_ms=12,
    )


@pytest.fixture
def fake_client():
    return FakeSupabaseClient()


@pytest.fixture
def store(fake_client):
    return TranscriptStore(client=fake_client)


@pytest.fixture
def gateway():
    mock_gateway = Mock(spec=CompletionGateway)
    mock_gateway.configured = True
    mock_gateway.complete.return_value = completion()
    return mock_gateway


@pytest.fixture
def manager(store, gateway):
    return ConversationManager(store, gateway)


@pytest.fixture
def auth(store):
    return AuthService(store, iterations=1000)


@pytest.fixture
def user(store):
    return store.create_user("Alice", "alice@example.com", "unused-hash")


@pytest.fixture
def other_user(store):
    return store.create_user("Bob", "bob@example.com", "unused-hash")


@pytest.fixture
def api_client(monkeypatch, store, gateway, manager, auth):
    """TestClient over the app with services wired to the in-memory store."""
    from fastapi.testclient import TestClient
    import main

    monkeypatch.setattr(main, "transcript_store", store)
    monkeypatch.setattr(main, "completion_gateway", gateway)
    monkeypatch.setattr(main, "conversation_manager", manager)
    monkeypatch.setattr(main, "auth_service", auth)

    # Not entered as a context manager, so the startup event never runs
    return TestClient(main.app)
