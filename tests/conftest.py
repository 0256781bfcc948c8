"""
Shared fixtures: principals, tokens and fully wired in-memory services.
"""

import os
import shutil
import tempfile

import pytest

from collab_core.api.services import build_memory_services, build_sqlite_services
from collab_core.config.loader import AppConfig
from collab_core.core.auth import StaticTokenAuthenticator
from collab_core.storage.models import MemberRole

OWNER = "user-owner"
EDITOR = "user-editor"
VIEWER = "user-viewer"
OUTSIDER = "user-outsider"

TOKENS = {
    "owner-token": OWNER,
    "editor-token": EDITOR,
    "viewer-token": VIEWER,
    "outsider-token": OUTSIDER,
}


def bearer(principal_id: str) -> str:
    for token, principal in TOKENS.items():
        if principal == principal_id:
            return f"Bearer {token}"
    raise KeyError(principal_id)


@pytest.fixture
def authenticator():
    return StaticTokenAuthenticator(TOKENS)


@pytest.fixture
def temp_db():
    temp_dir = tempfile.mkdtemp()
    yield os.path.join(temp_dir, "test.db")
    shutil.rmtree(temp_dir, ignore_errors=True)


def _with_members(services):
    project = services.projects.create_project(OWNER, "Initial")
    services.projects.add_member(project.id, EDITOR, MemberRole.EDITOR)
    services.projects.add_member(project.id, VIEWER, MemberRole.VIEWER)
    return services, project


@pytest.fixture
def memory_services(authenticator):
    services = build_memory_services(AppConfig(), authenticator)
    yield services
    services.close()


@pytest.fixture
def project_services(memory_services):
    """In-memory services with one project: owner, editor and viewer."""
    return _with_members(memory_services)


@pytest.fixture
def sqlite_project_services(authenticator, temp_db):
    """SQLite services with one project: owner, editor and viewer."""
    config = AppConfig().with_env({"COLLAB_CORE_DB_PATH": temp_db})
    services = build_sqlite_services(config, authenticator)
    yield _with_members(services)
    services.close()
