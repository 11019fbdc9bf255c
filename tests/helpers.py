"""Builders shared by the FieldScan tests."""

from datetime import datetime, timedelta

import httpx

from fieldscan.api import ApiClient
from fieldscan.auth import TOKEN_KEY, AuthManager, MemoryCredentialStore
from fieldscan.models import ChecklistResult, CheckpointStatus, Submission

BASE_URL = "http://backend.test/api"


class FakeClock:
    """Manually advanced clock for cache expiry tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 8, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_submission(code="PU", status=CheckpointStatus.OK, performed_by="Tekniker"):
    return Submission(
        code=code,
        performed_by=performed_by,
        results=[ChecklistResult(checkpoint_id=1, text="Kontroller lager", type="Sjekk", status=status)],
        completed_at=datetime(2024, 5, 1, 9, 0, 0),
    )


def make_api(handler, *, auth=None, max_retries=3):
    """ApiClient talking to ``handler`` through an in-process transport."""

    sleeps = []
    client = ApiClient(
        BASE_URL,
        auth=auth,
        max_retries=max_retries,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=sleeps.append,
    )
    client.sleeps = sleeps
    return client


def make_auth(handler, *, token="stored-token", token_provider=None):
    credentials = MemoryCredentialStore({TOKEN_KEY: token} if token else None)
    return AuthManager(
        BASE_URL,
        store=credentials,
        token_provider=token_provider,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
