"""Classification of benign GitHub failure modes.

GitHub reports two conditions as errors that policy enforcement treats as
normal states:

- A repository with no commits has no default branch, so branch and
  protection endpoints fail. Git-level endpoints answer HTTP 409 ("Git
  Repository is empty."); the branch endpoints answer HTTP 404 ("Branch not
  found"). A 404 only means "empty" when the caller knows the repository has
  no history, so the branch check takes a ``has_history`` hint.
- A repository that predates team-based access answers the team listing with
  HTTP 404.

Both predicates check the structured status code first. The message substring
checks are a fallback for errors raised without a status code (for example
when an upstream proxy rewrites the response); they are deliberately narrow
and covered by tests so widening them is a visible change.
"""

from __future__ import annotations

from http import HTTPStatus

from .errors import GitHubAPIError

_EMPTY_REPOSITORY_MARKERS = ("empty repository", "repository is empty")
_MISSING_BRANCH_MARKER = "branch not found"
_NOT_FOUND_MARKER = "404"


def is_expected_empty_state(
    error: BaseException, *, has_history: bool = True
) -> bool:
    """Return True when ``error`` means the repository has no history yet.

    Parameters
    ----------
    error
        Failure raised by a branch or protection call.
    has_history
        ``False`` when the repository is known to hold no content, in which
        case a missing default branch is also an empty state.

    Examples
    --------
    >>> is_expected_empty_state(GitHubAPIError("boom", status_code=409))
    True
    >>> is_expected_empty_state(GitHubAPIError("boom", status_code=404))
    False
    >>> is_expected_empty_state(
    ...     GitHubAPIError("boom", status_code=404), has_history=False
    ... )
    True

    """
    if not isinstance(error, GitHubAPIError):
        return False
    if error.status_code == HTTPStatus.CONFLICT:
        return True
    if error.status_code == HTTPStatus.NOT_FOUND:
        return not has_history
    if error.status_code is not None:
        return False
    message = str(error).lower()
    if not has_history and _MISSING_BRANCH_MARKER in message:
        return True
    return any(marker in message for marker in _EMPTY_REPOSITORY_MARKERS)


def is_missing_grant_state(error: BaseException) -> bool:
    """Return True when a team listing failed because no grants exist."""
    if not isinstance(error, GitHubAPIError):
        return False
    if error.status_code is not None:
        return error.status_code == HTTPStatus.NOT_FOUND
    return _NOT_FOUND_MARKER in str(error)


__all__ = ["is_expected_empty_state", "is_missing_grant_state"]
