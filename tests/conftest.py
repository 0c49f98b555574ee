import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import AuthError

from civiclens.core.config import Settings
from civiclens.main import create_app
from civiclens.services.supabase_service import SupabaseService


CITIZEN_TOKEN = "citizen-token"
AUTHORITY_TOKEN = "authority-token"


class InvalidTokenError(AuthError):
    def __init__(self, message):
        Exception.__init__(self, message)
        self.message = message


def make_settings(**overrides) -> Settings:
    values = {"ENVIRONMENT": "development", "LOG_LEVEL": "WARNING"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeSupabaseService(SupabaseService):
    """In-memory stand-in for the Supabase gateway. Detached-task handling is inherited."""

    def __init__(self):
        super().__init__(make_settings(), client=object(), admin_client=object())
        self.users: Dict[str, Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.issues: List[Dict[str, Any]] = []
        self.issue_logs: List[Dict[str, Any]] = []
        self.metadata_updates: List[tuple] = []
        self.fail_metadata_update = False
        self.fail_log_insert = False
        self.log_attempts = 0
        self.fail_insert: Optional[Exception] = None
        self.fail_reads = False
        self._clock = datetime(2024, 1, 1, 12, 0, 0)

    def add_user(self, token, user_id, email, metadata=None, profile=None):
        self.users[token] = {"id": user_id, "email": email, "user_metadata": metadata or {}}
        if profile is not None:
            self.profiles[user_id] = {"id": user_id, **profile}

    def add_issue(self, **fields) -> Dict[str, Any]:
        self._clock += timedelta(minutes=1)
        issue = {
            "id": str(uuid.uuid4()),
            "status": "reported",
            "created_at": self._clock.isoformat(),
            **fields,
        }
        self.issues.append(issue)
        return issue

    def _find(self, issue_id):
        return [issue for issue in self.issues if issue["id"] == issue_id]

    async def get_user(self, token):
        if token not in self.users:
            raise InvalidTokenError("invalid JWT: unable to parse or verify signature")
        return dict(self.users[token])

    async def get_profile(self, user_id):
        return self.profiles.get(user_id)

    async def update_user_metadata(self, user_id, metadata):
        if self.fail_metadata_update:
            raise RuntimeError("metadata update rejected")
        self.metadata_updates.append((user_id, metadata))

    async def insert_issue(self, data):
        if self.fail_insert is not None:
            raise self.fail_insert
        return [self.add_issue(**data)]

    async def list_issues(self, citizen_id=None, limit=None):
        if self.fail_reads:
            raise PostgrestAPIError({"message": "connection refused", "code": "08006"})
        rows = [i for i in self.issues if citizen_id is None or i.get("citizen_id") == citizen_id]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return rows[:limit] if limit is not None else rows

    async def get_issue(self, issue_id):
        if self.fail_reads:
            raise PostgrestAPIError({"message": "connection refused", "code": "08006"})
        rows = self._find(issue_id)
        return dict(rows[0]) if rows else None

    async def update_issue(self, issue_id, data):
        rows = self._find(issue_id)
        for row in rows:
            row.update(data)
        return [dict(row) for row in rows]

    async def delete_issue(self, issue_id):
        self.issues = [i for i in self.issues if i["id"] != issue_id]

    async def delete_issues(self, issue_ids):
        self.issues = [i for i in self.issues if i["id"] not in issue_ids]

    async def insert_issue_log(self, entry):
        self.log_attempts += 1
        if self.fail_log_insert:
            raise PostgrestAPIError({"message": "permission denied for table issue_logs", "code": "42501"})
        self.issue_logs.append(entry)


class FakeClassifier:
    def __init__(self, result=None):
        self.result = result or {"issue_type": "pothole", "assigned_authority": "road"}
        self.calls: List[tuple] = []

    async def classify(self, image_url, description):
        self.calls.append((image_url, description))
        return dict(self.result)


@pytest.fixture
def supabase():
    fake = FakeSupabaseService()
    fake.add_user(
        CITIZEN_TOKEN,
        "citizen-1",
        "citizen@example.com",
        metadata={"role": "citizen", "department": None},
    )
    fake.add_user(
        AUTHORITY_TOKEN,
        "authority-1",
        "head@example.com",
        metadata={"role": "head_authority", "department": "head"},
        profile={"role": "Head Authority", "department": "head"},
    )
    return fake


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def app(settings, supabase, classifier):
    return create_app(settings, supabase_service=supabase, classifier=classifier)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def citizen_headers():
    return {"Authorization": f"Bearer {CITIZEN_TOKEN}"}


@pytest.fixture
def authority_headers():
    return {"Authorization": f"Bearer {AUTHORITY_TOKEN}"}
