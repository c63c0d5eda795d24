import pytest

from storefront.config.settings import break_glass_emails, env_bool, env_float, load_settings, split_emails


def test_env_bool(monkeypatch):
    monkeypatch.setenv('FLAG_X', 'Yes')
    assert env_bool('FLAG_X', False) is True
    monkeypatch.setenv('FLAG_X', 'off')
    assert env_bool('FLAG_X', True) is False
    monkeypatch.delenv('FLAG_X')
    assert env_bool('FLAG_X', True) is True


def test_env_float_rejects_garbage(monkeypatch):
    monkeypatch.setenv('TTL_X', 'soon')
    with pytest.raises(ValueError):
        env_float('TTL_X', 1.0)


def test_split_emails():
    assert split_emails(' a@x.io, ,b@x.io ') == ['a@x.io', 'b@x.io']
    assert split_emails(None) == []


def test_break_glass_prefers_explicit_list(monkeypatch):
    monkeypatch.setenv('BREAK_GLASS_EMAILS', 'ops@example.com')
    monkeypatch.setenv('ADMIN_EMAIL', 'admin@example.com')
    assert break_glass_emails() == ['ops@example.com']


def test_break_glass_falls_back_to_admin_vars(monkeypatch):
    monkeypatch.delenv('BREAK_GLASS_EMAILS', raising=False)
    monkeypatch.setenv('ADMIN_DEV_USER_EMAIL', 'dev@example.com')
    monkeypatch.setenv('ADMIN_EMAIL', 'admin@example.com')
    assert break_glass_emails() == ['dev@example.com', 'admin@example.com']


def test_load_settings_defaults(monkeypatch):
    for name in ('PERMISSION_CACHE_TTL_SECONDS', 'ORDER_EXTENDED_STATES', 'PERMISSION_CACHE_MAX_ENTRIES'):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings['PERMISSION_CACHE_TTL_SECONDS'] == 60.0
    assert settings['PERMISSION_CACHE_MAX_ENTRIES'] is None
    assert settings['ORDER_EXTENDED_STATES'] is True
