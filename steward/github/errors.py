"""GitHub REST client errors."""

from __future__ import annotations


class GitHubAPIError(RuntimeError):
    """Raised when GitHub returns an error response or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        documentation_url: str | None = None,
    ) -> None:
        """Initialise with a message and optional HTTP status details."""
        self.status_code = status_code
        self.documentation_url = documentation_url
        super().__init__(message)

    @classmethod
    def http_error(
        cls,
        status_code: int,
        *,
        method: str,
        path: str,
        detail: str | None = None,
    ) -> GitHubAPIError:
        """Return an error for a non-2xx HTTP response."""
        suffix = f": {detail}" if detail else ""
        return cls(
            f"GitHub {method} {path} returned HTTP {status_code}{suffix}",
            status_code=status_code,
        )

    @classmethod
    def retries_exhausted(
        cls,
        *,
        method: str,
        path: str,
        attempts: int,
        last_error: str,
        status_code: int | None = None,
    ) -> GitHubAPIError:
        """Return an error once every retry of a request has failed."""
        return cls(
            f"GitHub {method} {path} failed after {attempts} attempt(s): {last_error}",
            status_code=status_code,
        )


class GitHubResponseShapeError(RuntimeError):
    """Raised when GitHub responses are missing expected fields."""

    @classmethod
    def missing(cls, field: str) -> GitHubResponseShapeError:
        """Return an error for a missing response field."""
        return cls(f"GitHub response missing expected field: {field}")

    @classmethod
    def unexpected(cls, field: str, expected: str) -> GitHubResponseShapeError:
        """Return an error for a field of the wrong JSON type."""
        return cls(f"GitHub response field {field} is not {expected}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def missing_token(cls) -> GitHubConfigError:
        """Return an error when no GitHub token is configured."""
        return cls("STEWARD_GITHUB_TOKEN is required for the GitHub API")

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")

    @classmethod
    def invalid_setting(cls, name: str, value: object) -> GitHubConfigError:
        """Return an error for an out-of-range numeric setting."""
        return cls(f"{name} has invalid value: {value!r}")
