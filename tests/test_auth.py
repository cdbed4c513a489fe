"""Tests for the stored auth context and token file handling."""

import json
import time

import pytest

from snapsync.auth import AuthContext, AuthManager
from snapsync.errors import AuthError


def test_validity():
    assert not AuthContext().valid
    assert AuthContext("tok").valid
    assert AuthContext("tok", expiry=time.time() + 60).valid
    assert not AuthContext("tok", expiry=time.time() - 60).valid


def test_store_round_trip(store):
    AuthContext("tok", 1234.0).save(store)
    assert AuthContext.from_store(store) == AuthContext("tok", 1234.0)

    AuthContext.clear(store)
    assert AuthContext.from_store(store) == AuthContext()


def test_resume_uses_stored_token(store, tmp_path):
    expiry = time.time() + 600
    AuthContext("stored", expiry).save(store)

    assert AuthManager(store, tmp_path).resume() == AuthContext("stored", expiry)


def test_resume_without_anything_returns_none(store, tmp_path):
    assert AuthManager(store, tmp_path).resume() is None


def test_non_interactive_without_token_file(store, tmp_path):
    with pytest.raises(AuthError):
        AuthManager(store, tmp_path).authenticate(interactive=False)


def test_valid_token_file_is_used(store, tmp_path):
    (tmp_path / "token.json").write_text(json.dumps({
        "token": "from-file",
        "refresh_token": "r",
        "client_id": "c",
        "client_secret": "s",
        "expiry": "2999-01-01T00:00:00Z",
    }))

    context = AuthManager(store, tmp_path).authenticate(interactive=False)

    assert context.token == "from-file"
    assert context.expiry > time.time()
    assert AuthContext.from_store(store) == context


def test_corrupt_token_file_is_removed(store, tmp_path):
    token_file = tmp_path / "token.json"
    token_file.write_text("{not json")

    with pytest.raises(AuthError):
        AuthManager(store, tmp_path).authenticate(interactive=False)
    assert not token_file.exists()


def test_logout_clears_everything(store, tmp_path):
    (tmp_path / "token.json").write_text("{}")
    AuthContext("tok").save(store)
    manager = AuthManager(store, tmp_path)

    manager.logout()

    assert not (tmp_path / "token.json").exists()
    assert not AuthContext.from_store(store).valid
