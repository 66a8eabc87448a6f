"""Authorization header selection.

Two header conventions are in use against GitHub-style hosts: the legacy
``token X`` form and the OAuth ``Bearer X`` form. The scheme is chosen from
the token's recognizable prefix.
"""

from __future__ import annotations

from enum import StrEnum


class HeaderStyle(StrEnum):
    TOKEN = "token"
    BEARER = "Bearer"


# Fine-grained PATs, app installation/user-to-server tokens, and JWTs
_BEARER_PREFIXES = ("github_pat_", "ghs_", "ghu_", "eyJ")


def choose_auth_scheme(token: str) -> HeaderStyle:
    """Pick the header convention for *token*.

    Classic personal access tokens (``ghp_``), OAuth tokens (``gho_``) and
    unrecognised formats use ``token``.
    """
    if token.strip().startswith(_BEARER_PREFIXES):
        return HeaderStyle.BEARER
    return HeaderStyle.TOKEN


def auth_header(token: str | None) -> dict[str, str]:
    """Authorization header for *token*, or no header when unset."""
    if not token:
        return {}
    token = token.strip()
    return {"Authorization": f"{choose_auth_scheme(token).value} {token}"}
