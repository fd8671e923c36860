import pytest
from pydantic import ValidationError

from kioku.application.config import AppConfig, config_file_path, resolve_config
from kioku.domain.errors import ConfigError


def _write_config(home, body: str):
    path = home / ".config" / "kioku" / "config.toml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    return path


def test_defaults(mock_home):
    config = resolve_config()

    assert config.backend == "sqlite"
    assert config.user_id == "local"
    assert config.session_limit == 20
    assert config.db_path == mock_home / ".config" / "kioku" / "kioku.db"

    params = config.scheduler_params()
    assert (params.min_ease, params.max_ease, params.initial_ease) == (1.3, 3.2, 2.5)
    assert (params.first_interval_days, params.second_interval_days) == (1, 3)


def test_config_file_follows_home(mock_home):
    assert config_file_path() == mock_home / ".config" / "kioku" / "config.toml"


def test_toml_file_is_read(mock_home):
    _write_config(mock_home, 'user_id = "alice"\nsession_limit = 5\nmax_ease = 3.0\n')

    config = resolve_config()

    assert config.user_id == "alice"
    assert config.session_limit == 5
    assert config.scheduler_params().max_ease == 3.0


def test_env_beats_toml_and_cli_beats_env(mock_home, monkeypatch):
    _write_config(mock_home, 'user_id = "from-file"\n')
    monkeypatch.setenv("KIOKU_USER_ID", "from-env")

    assert resolve_config().user_id == "from-env"
    assert resolve_config({"user_id": "from-cli"}).user_id == "from-cli"


def test_none_overrides_are_ignored(mock_home, monkeypatch):
    monkeypatch.setenv("KIOKU_USER_ID", "from-env")

    config = resolve_config({"user_id": None, "session_limit": None})

    assert config.user_id == "from-env"
    assert config.session_limit == 20


def test_paths_are_expanded(mock_home):
    config = AppConfig(db_path="~/cards.db", catalog_path="~/kanji.yaml")

    assert config.db_path == (mock_home / "cards.db").resolve()
    assert config.catalog_path == (mock_home / "kanji.yaml").resolve()


def test_rest_backend_requires_url(mock_home):
    with pytest.raises(ConfigError, match="rest_url"):
        resolve_config({"backend": "rest"})

    config = resolve_config({"backend": "rest", "rest_url": "https://db.example.com"})
    assert config.rest_url == "https://db.example.com"


def test_inverted_ease_bounds_rejected(mock_home):
    config = AppConfig(min_ease=3.0, max_ease=2.0)

    with pytest.raises(ConfigError):
        config.scheduler_params()


def test_invalid_values_rejected(mock_home):
    with pytest.raises(ValidationError):
        AppConfig(session_limit=-1)
    with pytest.raises(ValidationError):
        AppConfig(backend="postgres")
    with pytest.raises(ValidationError):
        AppConfig(write_max_attempts=0)
    with pytest.raises(ValidationError):
        AppConfig(max_interval_days=0)
    with pytest.raises(ValidationError):
        AppConfig(max_open_sessions=0)


def test_retry_policy(mock_home):
    policy = AppConfig(write_max_attempts=5, write_base_delay=0.1).retry_policy()

    assert policy.max_attempts == 5
    assert policy.base_delay == 0.1
    assert policy.max_delay == 5.0


def test_interval_cap_reaches_scheduler(mock_home):
    assert AppConfig().scheduler_params().max_interval_days == 36500
    assert AppConfig(max_interval_days=365).scheduler_params().max_interval_days == 365
