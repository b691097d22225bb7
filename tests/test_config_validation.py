from pathlib import Path

import pytest
import yaml

from topads_collector.config_loader import ConfigLoader, ConfigValidationError, load_config

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def _base() -> dict:
    return yaml.safe_load(REPO_CONFIG.read_text(encoding="utf-8"))


def test_repository_config_is_valid() -> None:
    config = load_config(str(REPO_CONFIG))

    verification = config.get_verification_settings()
    assert verification.mode == "manual_fallback"
    assert verification.allows_automatic and verification.allows_manual
    assert config.get_session_settings().navigation_timeouts_ms == (30000, 45000, 60000)
    assert config.get_collection_settings().default_advances == 20
    assert config.get_storage_settings().backend == "sqlite"


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ConfigLoader(str(tmp_path / "nope.yaml"))


@pytest.mark.parametrize(
    "section,key,value",
    [
        ("verification", "mode", "yolo"),
        ("storage", "backend", "postgres"),
        ("collection", "step_delay_ms_min", -1),
        ("verification", "overall_timeout_seconds", 0),
        ("browser", "page_timeout", 0),
    ],
)
def test_invalid_values_rejected(tmp_path: Path, section: str, key: str, value) -> None:
    data = _base()
    data[section][key] = value

    with pytest.raises(ConfigValidationError):
        ConfigLoader(str(_write(tmp_path, data)))


def test_min_above_max_rejected(tmp_path: Path) -> None:
    data = _base()
    data["collection"]["advance_delay_ms_min"] = 5000
    data["collection"]["advance_delay_ms_max"] = 1000

    with pytest.raises(ConfigValidationError, match="advance_delay_ms_min"):
        ConfigLoader(str(_write(tmp_path, data)))


def test_cli_overrides_applied_before_validation(tmp_path: Path) -> None:
    path = _write(tmp_path, _base())

    config = ConfigLoader(
        str(path),
        overrides={
            "verification.mode": "manual_only",
            "browser.headless": True,
            "session.file": str(tmp_path / "other.json"),
            "collection.default_advances": None,
        },
    )

    assert config.get_verification_settings().mode == "manual_only"
    assert config.get_verification_settings().allows_automatic is False
    assert config.is_headless() is True
    assert config.get_session_settings().session_file == tmp_path / "other.json"
    assert config.get_collection_settings().default_advances == 20

    with pytest.raises(ConfigValidationError):
        ConfigLoader(str(path), overrides={"verification.mode": "sometimes"})


def test_secrets_come_from_named_env_vars(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    data = _base()
    data["credentials"]["email_env"] = "MY_LOGIN"
    monkeypatch.setenv("MY_LOGIN", " ops@example.com ")
    monkeypatch.setenv("TOPADS_PASSWORD", "s3cret")
    monkeypatch.setenv("SAD_CAPTCHA_API_KEY", "licence")
    monkeypatch.setenv("EMAIL_API_TOKEN", "tok")

    config = ConfigLoader(str(_write(tmp_path, data)))
    credentials = config.get_credentials()

    assert credentials.email == "ops@example.com"
    assert credentials.password == "s3cret"
    assert credentials.is_complete()
    assert "s3cret" not in repr(credentials)
    assert config.get_captcha_api_key() == "licence"
    assert config.get_mail_token() == "tok"


def test_jsonl_backend_default_connection(tmp_path: Path) -> None:
    data = _base()
    data["storage"] = {"backend": "jsonl"}

    config = ConfigLoader(str(_write(tmp_path, data)))

    assert config.get_storage_settings().connection == "storage/ads-jsonl"


def test_dot_notation_get_and_set(tmp_path: Path) -> None:
    config = ConfigLoader(str(_write(tmp_path, _base())))

    assert config.get("verification.mode") == "manual_fallback"
    assert config.get("verification.missing", "fallback") == "fallback"
    assert config.get("target.start_url.deeper") is None

    config.set("new.section.value", 3)
    assert config.get("new.section.value") == 3
