"""Factory for creating the provider backend that matches a forge."""

from dataclasses import replace

from forgereview.backends.base import ProviderBackend
from forgereview.backends.github import GitHubBackend
from forgereview.backends.gitlab import GitLabBackend
from forgereview.backends.models import PullRequestIdentity
from forgereview.store.base import ReviewStateStore
from forgereview.utils.errors import DiagnosticLog
from forgereview.utils.logging import get_logger

logger = get_logger(__name__)

BACKENDS: dict[str, type[GitHubBackend] | type[GitLabBackend]] = {
    "github": GitHubBackend,
    "gitlab": GitLabBackend,
}


def api_url_for_host(forge: str, host: str) -> str:
    """Turn a bare host name into the forge's API root. Full URLs pass through.

    github.com -> https://api.github.com, ghe.example -> https://ghe.example/api/v3,
    gitlab.example -> https://gitlab.example/api/v4
    """
    if host.startswith(("http://", "https://")):
        return host.rstrip("/")
    host = host.strip("/")
    if forge == "github":
        if host in ("github.com", "api.github.com"):
            return "https://api.github.com"
        return f"https://{host}/api/v3"
    return f"https://{host}/api/v4"


def get_backend(
    forge: str,
    identity: PullRequestIdentity,
    token: str | None = None,
    host: str | None = None,
    store: ReviewStateStore | None = None,
    diagnostics: DiagnosticLog | None = None,
    timeout: float | None = None,
) -> ProviderBackend:
    """Build the backend for `forge` addressing `identity`.

    Args:
        forge: "github" or "gitlab"
        identity: The pull request; its forge field is overridden by `forge`
        token: Forge token, falls back to GITHUB_TOKEN / GITLAB_TOKEN
        host: Host name or API root URL, falls back to the configured API URL
        store: Review-state store shared between backends
        diagnostics: Sink for classified failures
        timeout: Default per-request timeout in seconds

    Raises:
        ValueError: If the forge is unknown or no token is available
    """
    forge = forge.lower()
    backend_class = BACKENDS.get(forge)
    if backend_class is None:
        raise ValueError(f"Unknown forge {forge!r}, expected one of {', '.join(BACKENDS)}")

    if identity.forge != forge:
        identity = replace(identity, forge=forge)

    api_url = api_url_for_host(forge, host) if host else None
    logger.debug(f"Creating {backend_class.__name__} for {identity}", api_url=api_url)
    return backend_class(
        identity,
        token,
        api_url=api_url,
        store=store,
        diagnostics=diagnostics,
        timeout=timeout,
    )
