from podcut import config
from podcut.models import Config


def test_load_default_config_when_missing(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)

    cfg = config.load_config()
    assert isinstance(cfg, Config)
    assert cfg.backend == "auto"
    assert cfg.skip_forward_seconds == 30
    assert cfg.skip_backward_seconds == 15


def test_save_and_load_config(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)

    cfg = Config(backend="faster", whisper_model="small", fallback_locale="de-DE")
    config.save_config(cfg)

    loaded = config.load_config()
    assert loaded.backend == "faster"
    assert loaded.whisper_model == "small"
    assert loaded.fallback_locale == "de-DE"


def test_update_config_validates_keys(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)

    config.update_config(backend="openai", skip_forward_seconds=45.0)
    loaded = config.load_config()
    assert loaded.backend == "openai"
    assert loaded.skip_forward_seconds == 45.0

    try:
        config.update_config(unknown="value")
    except config.ConfigError:
        pass
    else:
        raise AssertionError("Expected ConfigError for invalid key")


def test_malformed_config_raises(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text("{not json")
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)

    try:
        config.load_config()
    except config.ConfigError:
        pass
    else:
        raise AssertionError("Expected ConfigError for malformed file")
