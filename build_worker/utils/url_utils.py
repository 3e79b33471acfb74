"""
URL Utils
=========
Credential handling for repository clone URLs.

A clone URL carrying a token must never reach a log line verbatim:
build it with ``build_authenticated_url`` and log it only through
``mask_url_credentials``.
"""
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

_MASK = "***"


def _host_part(netloc: str) -> str:
    return netloc.rsplit("@", 1)[-1]


def build_authenticated_url(repo_url: str, git_token: Optional[str] = None) -> str:
    """
    Embed ``git_token`` as the credential portion of ``repo_url``.

    Without a token the URL is returned unmodified. Any existing userinfo
    is replaced; scheme, host, path and query are preserved.

    >>> build_authenticated_url("https://github.com/org/repo", "t1")
    'https://t1@github.com/org/repo'
    >>> build_authenticated_url("https://github.com/org/repo")
    'https://github.com/org/repo'
    """
    if not git_token:
        return repo_url

    parts = urlsplit(repo_url)
    if not parts.scheme or not parts.netloc:
        raise ValueError("repository URL must be absolute to carry a token")

    netloc = f"{quote(git_token, safe='')}@{_host_part(parts.netloc)}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def mask_url_credentials(url: str) -> str:
    """Replace any userinfo in ``url`` with ``***`` for logging."""
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    netloc = f"{_MASK}@{_host_part(parts.netloc)}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
