from forgereview.backends.gitlab.backend import GitLabBackend

__all__ = ["GitLabBackend"]
