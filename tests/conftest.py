"""
Shared pytest fixtures for the Dossier Exports test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - export_dir: Per-test artifact directory (autouse)
    - instructeur / procedure / groupe: Pre-created entities
"""

import pytest

from dossier_exports import create_app
from dossier_exports.models import db as _db

from tests import factories


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def export_dir(app, tmp_path, monkeypatch):
    """Write artifacts under the test's temporary directory."""
    directory = tmp_path / "exports"
    monkeypatch.setitem(app.config, "EXPORT_STORAGE_DIR", str(directory))
    return directory


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def instructeur():
    return factories.make_instructeur()


@pytest.fixture()
def procedure():
    """Entity procedure with two public and two private text fields."""
    return factories.make_procedure(
        types_de_champ_public=[{"type": "text"}, {"type": "text"}],
        types_de_champ_private=[{"type": "text"}, {"type": "text"}],
    )


@pytest.fixture()
def groupe(procedure, instructeur):
    """Default groupe instructeur of ``procedure`` with ``instructeur`` assigned."""
    groupe = procedure.groupe_instructeurs[0]
    groupe.add(instructeur)
    _db.session.flush()
    return groupe
