import argparse
from pathlib import Path

from whatsapp_monitor.__main__ import build_settings


def _args(**overrides) -> argparse.Namespace:
    values = dict(
        host=None,
        port=None,
        backend_url=None,
        gateway_url=None,
        session_name=None,
        auth_dir=None,
        groups_file=None,
        log_capacity=None,
        auto_clone=None,
    )
    values.update(overrides)
    return argparse.Namespace(**values)


def test_defaults_apply_without_flags_or_env(monkeypatch) -> None:
    for name in (
        "HOST",
        "PORT",
        "FLASK_API",
        "WA_GATEWAY_URL",
        "WA_SESSION_NAME",
        "WA_AUTH_DIR",
        "MONITORED_GROUPS_FILE",
        "MESSAGE_LOG_CAPACITY",
        "AUTO_CLONE",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = build_settings(_args())

    assert settings.port == 3001
    assert settings.backend_url == "http://localhost:5000"
    assert settings.auth_dir == Path("auth_info_baileys")
    assert settings.groups_file == Path("monitored_groups.json")
    assert settings.log_capacity == 500
    assert settings.auto_clone is True


def test_environment_and_flags_override_defaults(monkeypatch) -> None:
    monkeypatch.setenv("PORT", "4000")
    monkeypatch.setenv("FLASK_API", "http://backend:5000")
    monkeypatch.setenv("AUTO_CLONE", "off")

    settings = build_settings(_args(port=5000, session_name="promos"))

    assert settings.port == 5000
    assert settings.backend_url == "http://backend:5000"
    assert settings.session_name == "promos"
    assert settings.auto_clone is False

    assert build_settings(_args(auto_clone=True)).auto_clone is True
