from __future__ import annotations

from argus import OrchestratorConfig, config_from_env


def test_defaults() -> None:
    config = OrchestratorConfig()

    assert config.routes.login == "/login"
    assert config.routes.after_login == "/dashboard"
    assert config.routes.public_redirect_url is None
    assert config.max_flow_recreations == 1
    assert config.observability.enabled


def test_absolute_resolves_against_site_origin() -> None:
    config = OrchestratorConfig(site_origin="https://app.example.com/")

    assert config.absolute("/login") == "https://app.example.com/login"
    assert config.absolute("settings") == "https://app.example.com/settings"
    assert config.absolute("https://elsewhere.test/x") == "https://elsewhere.test/x"


def test_config_from_env() -> None:
    config = config_from_env(
        {
            "ARGUS_SITE_ORIGIN": "https://admin.example.com",
            "ARGUS_PROVIDER_URL": "https://auth.example.com",
            "ARGUS_BACKEND_URL": "https://api.example.com",
            "ARGUS_HTTP_TIMEOUT": "2.5",
            "ARGUS_PUBLIC_REDIRECT_URL": "https://www.example.com",
        }
    )

    assert config.site_origin == "https://admin.example.com"
    assert config.provider.base_url == "https://auth.example.com"
    assert config.provider.timeout == 2.5
    assert config.backend.base_url == "https://api.example.com"
    assert config.backend.timeout == 2.5
    assert config.routes.public_redirect_url == "https://www.example.com"


def test_config_from_env_treats_blank_redirect_as_unset() -> None:
    config = config_from_env({"ARGUS_PUBLIC_REDIRECT_URL": ""})

    assert config.routes.public_redirect_url is None
    assert config.provider.base_url == "http://localhost:4433"
