"""Configuration utility for forgereview.

This module provides centralized configuration management with:
- Environment variables as the only source
- Type-safe access to configuration values
- Defaults for the public forge hosts
"""

import os
from typing import Any

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_GITLAB_API_URL = "https://gitlab.com/api/v4"
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0


def parse_config_value(value: str) -> str | bool | int | float:
    if value.lower() == "true":
        return True
    elif value.lower() == "false":
        return False
    else:
        # Try to parse as a number
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return value


def get_config_value(key: str, default: Any = None) -> Any:
    """Get a configuration value from environment variables.

    Args:
        key: Configuration key name (e.g., "GITHUB_API_URL")
        default: Default value if key not found

    Returns:
        Parsed configuration value or default
    """
    env_value = os.environ.get(key)
    if env_value is not None:
        return parse_config_value(env_value)

    return default


def get_config_value_str(key: str) -> str | None:
    """
    Get a configuration value from environment variables. But sometimes you just want a string.
    """
    return os.environ.get(key)


def get_forgereview_environment() -> str:
    """Get the runtime environment name ("local", "staging", "production", ...)."""
    return get_config_value_str("FORGEREVIEW_ENVIRONMENT") or "local"


def get_http_timeout_seconds() -> float:
    """Get the default per-request HTTP timeout used by the transport."""
    return float(get_config_value("FORGEREVIEW_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS))


def _strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


def get_github_api_url() -> str:
    """Get the GitHub REST API root. Set GITHUB_API_URL for GitHub Enterprise hosts."""
    return _strip_trailing_slash(get_config_value_str("GITHUB_API_URL") or DEFAULT_GITHUB_API_URL)


def get_github_web_url(api_url: str | None = None) -> str:
    """Get the browsable GitHub host.

    Derived from the API URL when GITHUB_WEB_URL is not set:
    https://api.github.com -> https://github.com, https://ghe.example/api/v3 -> https://ghe.example
    """
    configured = get_config_value_str("GITHUB_WEB_URL")
    if configured and api_url is None:
        return _strip_trailing_slash(configured)

    api_url = _strip_trailing_slash(api_url or get_github_api_url())
    if api_url == DEFAULT_GITHUB_API_URL:
        return "https://github.com"
    if api_url.endswith("/api/v3"):
        return api_url[: -len("/api/v3")]
    return api_url


def get_github_graphql_url(api_url: str | None = None) -> str:
    """Get the GitHub GraphQL endpoint matching the REST API root."""
    api_url = _strip_trailing_slash(api_url or get_github_api_url())
    if api_url.endswith("/api/v3"):
        return api_url[: -len("/v3")] + "/graphql"
    return f"{api_url}/graphql"


def get_github_token() -> str | None:
    return get_config_value_str("GITHUB_TOKEN")


def get_gitlab_api_url() -> str:
    """Get the GitLab REST API root. Set GITLAB_API_URL for self-hosted instances."""
    return _strip_trailing_slash(get_config_value_str("GITLAB_API_URL") or DEFAULT_GITLAB_API_URL)


def get_gitlab_web_url(api_url: str | None = None) -> str:
    """Get the browsable GitLab host, derived from the API URL unless GITLAB_WEB_URL is set."""
    configured = get_config_value_str("GITLAB_WEB_URL")
    if configured and api_url is None:
        return _strip_trailing_slash(configured)

    api_url = _strip_trailing_slash(api_url or get_gitlab_api_url())
    if api_url.endswith("/api/v4"):
        return api_url[: -len("/api/v4")]
    return api_url


def get_gitlab_graphql_url(api_url: str | None = None) -> str:
    return f"{get_gitlab_web_url(api_url)}/api/graphql"


def get_gitlab_token() -> str | None:
    return get_config_value_str("GITLAB_TOKEN")


def get_redis_url() -> str:
    """Get the Redis connection URL used by the review-state store."""
    url = get_config_value_str("REDIS_URL") or "localhost:6379"
    if not url.startswith(("redis://", "rediss://", "unix://")):
        url = f"redis://{url}"
    return url
