"""Release host (GitHub) integration."""

from shipyard.host.auth import HeaderStyle, auth_header, choose_auth_scheme
from shipyard.host.client import ReleaseHostClient
from shipyard.host.models import (
    ReleaseAsset,
    ReleaseRecord,
    WorkflowDispatch,
    WorkflowSigningParams,
)
from shipyard.host.repository import RepositoryRef, parse_repository_url

__all__ = [
    "HeaderStyle",
    "ReleaseAsset",
    "ReleaseHostClient",
    "ReleaseRecord",
    "RepositoryRef",
    "WorkflowDispatch",
    "WorkflowSigningParams",
    "auth_header",
    "choose_auth_scheme",
    "parse_repository_url",
]
