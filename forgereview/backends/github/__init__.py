from forgereview.backends.github.backend import GitHubBackend

__all__ = ["GitHubBackend"]
