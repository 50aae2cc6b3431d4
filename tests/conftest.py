"""Pytest configuration and fixtures."""
import os
import tempfile

# Set test env BEFORE any imports that use config
_db_path = os.path.join(tempfile.gettempdir(), f"puckdrop-test-{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_db_path}"
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from httpx import ASGITransport, AsyncClient

from puckdrop.models import Base, TournamentFormat, User, async_session_factory
from puckdrop.models.base import engine
from puckdrop.services import admins, bracket_gen, lifecycle
from puckdrop.services.locks import reset_locks
from web.api.main import app
from web.auth import create_access_token


@pytest.fixture(autouse=True)
async def _init_db():
    """Fresh schema per test (ASGI lifespan doesn't run with httpx)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()
    reset_locks()


@pytest.fixture
async def session():
    async with async_session_factory() as s:
        yield s


@pytest.fixture
async def users(session):
    """owner, admin, scorekeeper and outsider user ids. Staff roles are granted per tournament."""
    created = {}
    for name in ("owner", "admin", "scorekeeper", "outsider"):
        u = User(username=name, display_name=name.capitalize())
        session.add(u)
        await session.flush()
        created[name] = u.id
    await session.commit()
    return created


@pytest.fixture
def make_tournament(session, users):
    """Factory: tournament with n seeded teams, staff roles and optionally a started bracket."""

    async def _make(n, bracket_format=TournamentFormat.DOUBLE_ELIMINATION, generate=True, start=True, **kwargs):
        owner = users["owner"]
        t = await lifecycle.create_tournament(session, f"{n}-Team Cup", bracket_format, owner, **kwargs)
        await admins.add_member(session, t.id, users["admin"], "Admin", owner)
        await admins.add_member(session, t.id, users["scorekeeper"], "Scorekeeper", owner)
        for seed in range(1, n + 1):
            await lifecycle.add_team(session, t.id, f"Team {seed}", seed, owner)
        if generate:
            await lifecycle.transition(session, t.id, "Publish", owner)
            await lifecycle.transition(session, t.id, "CloseRegistration", owner)
            await bracket_gen.generate_bracket(session, t.id, owner)
            if start:
                await lifecycle.transition(session, t.id, "Start", owner)
        return t

    return _make


@pytest.fixture
def seeds(session):
    """seed -> team id for a tournament."""

    async def _seeds(tournament_id):
        teams = await lifecycle.list_teams(session, tournament_id)
        return {t.seed: t.id for t in teams}

    return _seeds


@pytest.fixture
def match_at(session):
    """Match with the given bracket position label (W-R1-M1, GF1, ...), freshly loaded."""

    async def _match_at(tournament_id, position):
        matches = await bracket_gen.get_matches(session, tournament_id, include_inactive=True)
        for m in matches:
            if m.bracket_position == position:
                return m
        raise AssertionError(f"No match {position}")

    return _match_at


@pytest.fixture
async def client():
    """Async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def auth_headers(users):
    """Authorization headers keyed by user name."""
    return {
        name: {"Authorization": f"Bearer {create_access_token(name)}"}
        for name in users
    }
