"""Shared fixtures: a file-backed SQLite database per test and an in-memory metric reader."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from app.config import Settings
from app.db.models import InstructorListing
from app.main import build_services, create_app
from app.observability.metrics import configure_metrics
from app.security import Role

STAFF_EMAIL = "prof@itm.kmutnb.ac.th"
STUDENT_EMAIL = "s6406021234567@email.kmutnb.ac.th"
OUTSIDER_EMAIL = "someone@gmail.com"


@pytest.fixture(scope="session")
def metric_reader() -> InMemoryMetricReader:
    reader = InMemoryMetricReader()
    configure_metrics(Settings(environment="test"), reader=reader)
    return reader


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'momoi.db'}",
        enable_autocreate_schema=True,
        log_format="json",
    )


@pytest.fixture
def services(settings, metric_reader):
    return build_services(settings)


@pytest.fixture
def db(services):
    session = services.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def resolver(services):
    return services.resolver


@pytest.fixture
def store(services):
    return services.identity_store


@pytest.fixture
def add_listing(services):
    def _add(email: str) -> None:
        with services.session_factory() as session:
            # Allow-list entries are provisioned outside the service.
            session.add(InstructorListing(email=email.strip().lower(), consumed=False))
            session.commit()

    return _add


@pytest.fixture
def add_user(services):
    def _add(subject_id: str, role: Role):
        with services.session_factory() as session:
            user = services.identity_store.create_user(session, subject_id, role)
            session.commit()
            return user

    return _add


@pytest.fixture
def app(settings, services):
    return create_app(settings, services)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sign_in(client):
    """Sign in through the development endpoint; the cookie stays on ``client``."""

    def _sign_in(email: str, subject_id: str):
        return client.post("/api/auth/sign-in/dev", json={"email": email, "subject_id": subject_id})

    return _sign_in


def metric_points(reader: InMemoryMetricReader, name: str) -> list[tuple[dict, float]]:
    data = reader.get_metrics_data()
    points: list[tuple[dict, float]] = []
    if data is None:
        return points
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name != name:
                    continue
                for point in metric.data.data_points:
                    points.append((dict(point.attributes), point.value))
    return points
