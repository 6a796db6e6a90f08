import json

import pytest

from flux_studio import config


@pytest.fixture(autouse=True)
def fresh_config():
    config.reset_config()
    yield
    config.reset_config()


def test_settings_file_with_env_override(tmp_path, monkeypatch):
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"env": {"BFL_API_KEY": "from-file", "POLL_MAX_ATTEMPTS": 10}}))
    monkeypatch.setattr(config, "SETTINGS_PATHS", [tmp_path / "absent.json", settings])
    monkeypatch.setenv("POLL_MAX_ATTEMPTS", "20")
    monkeypatch.setenv("FLUX_STUDIO_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("BFL_API_KEY", raising=False)
    monkeypatch.setenv("CLIENT_URL", "https://studio.example")

    cfg = config.get_config()

    assert cfg["bfl_api_key"] == "from-file"
    assert cfg["poll_max_attempts"] == 20
    assert cfg["content_dir"] == tmp_path / "data" / "generated"
    assert cfg["source"] == str(settings)
    assert "https://studio.example" in cfg["cors_origins"]


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "SETTINGS_PATHS", [tmp_path / "absent.json"])
    for key in ("BFL_API_BASE_URL", "UPLOAD_MAX_AGE_DAYS", "POLL_INTERVAL_MS"):
        monkeypatch.delenv(key, raising=False)

    cfg = config.get_config()

    assert cfg["bfl_base_url"] == "https://api.bfl.ai"
    assert cfg["max_age_days"] == 7
    assert cfg["poll_interval_ms"] == 2000
    assert cfg["source"] == "env"
    assert config.get_config() is cfg
