"""tests/test_config.py -- SECRET_KEY policy in core/config.py."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_debug_generates_a_key(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    settings = Settings(debug=True, _env_file=None)
    assert len(settings.secret_key) >= 32


def test_production_requires_a_key(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, _env_file=None)


def test_short_key_rejected():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=True, secret_key="too-short", _env_file=None)


def test_explicit_key_kept():
    key = "k" * 40
    assert Settings(secret_key=key, _env_file=None).secret_key == key


def test_session_defaults():
    settings = Settings(debug=True, _env_file=None)
    assert settings.session_cookie == "memberportal_session"
    assert settings.session_max_age == 8 * 3600
    assert settings.secure_cookies is False
