"""Shared fixtures for the FieldScan test-suite."""

import pytest

from fieldscan.models import Checkpoint
from fieldscan.store import OfflineStore

from helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    db = OfflineStore(":memory:", clock=clock)
    yield db
    db.close()


@pytest.fixture
def checkpoints():
    return [
        Checkpoint(id=1, text="Kontroller lager", type="Sjekk", criticality="Høy"),
        Checkpoint(id=2, text="Mål trykk", type="Måling"),
        Checkpoint(id=3, text="Visuell kontroll", type="Inspeksjon", description="Se etter lekkasjer"),
    ]
