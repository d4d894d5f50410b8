import pytest

from tweetcourse.config import load_app_config


def test_defaults_when_environment_is_empty():
    config = load_app_config({})

    assert config.db_port == 5432
    assert config.db_connect_timeout == 5
    assert config.session_cookie_name == "session"
    assert config.admin_api_token is None
    assert config.allow_test_tier_override is False
    assert config.usage_reset_scheduler_enabled is False
    assert config.usage_reset_batch_size == 500
    assert config.cors_origins == ("http://localhost:5173",)


def test_values_are_coerced():
    config = load_app_config(
        {
            "DB_PORT": "6543",
            "DB_CONNECT_TIMEOUT": "2.5",
            "ADMIN_API_TOKEN": "tok",
            "ALLOW_TEST_TIER_OVERRIDE": "yes",
            "USAGE_RESET_SCHEDULER_ENABLED": "1",
            "USAGE_RESET_INTERVAL_SECONDS": "0",
            "USAGE_RESET_BATCH_SIZE": "25",
            "CORS_ORIGINS": "https://app.example.com/, http://localhost:3000",
        }
    )

    assert config.db_port == 6543
    assert config.db_connect_timeout == 3
    assert config.admin_api_token == "tok"
    assert config.allow_test_tier_override is True
    assert config.usage_reset_scheduler_enabled is True
    assert config.usage_reset_interval_seconds == 1.0
    assert config.usage_reset_batch_size == 25
    assert config.cors_origins == ("https://app.example.com", "http://localhost:3000")
    assert config.db_settings["connect_timeout"] == 3


@pytest.mark.parametrize("env", [{"DB_PORT": "abc"}, {"DB_CONNECT_TIMEOUT": "-1"}])
def test_invalid_values_raise(env):
    with pytest.raises(ValueError):
        load_app_config(env)
