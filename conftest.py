"""
Test conftest — isolate provider secrets and config-path environment
variables so settings tests are not affected by the developer's or CI
environment.
"""
import pytest

_ENV_VARS = [
    "LITELLM_API_KEY",
    "OLLAMA_HOST",
    "LOCALBOT_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove secret env vars for every test so Settings() behaves as if
    none are present unless the test explicitly provides them. Also
    disables .env file loading so local developer .env files don't leak
    into tests, and drops any cached Settings singleton."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import localbot.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    settings_module.reset_settings()
    yield
    settings_module.reset_settings()


@pytest.fixture(autouse=True)
def _reset_capability_overrides():
    from localbot.brain.capabilities import clear_overrides
    clear_overrides()
    yield
    clear_overrides()
