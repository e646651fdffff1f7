"""
URL normalization utilities for consistent cache keys.
"""
from urllib.parse import urlparse, urlunparse


def normalize_github_url(url: str) -> str:
    """
    Normalize a GitHub repository URL so that variants share one cache key.

    Scheme, host and path are lowercased; a trailing slash, a '.git' suffix,
    the query and the fragment are dropped.

    Examples:
        >>> normalize_github_url("https://GitHub.com/User/Repo.git/")
        'https://github.com/user/repo'
    """
    parsed = urlparse(url.strip())

    path = parsed.path.lower().rstrip("/")
    if path.endswith(".git"):
        path = path[:-4]

    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        path,
        "",  # params
        "",  # query
        ""   # fragment
    ))
