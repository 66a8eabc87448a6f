"""Self-update client for applications released by the pipeline."""

from shipyard.updater.models import (
    AssetKind,
    CheckResult,
    CheckStatus,
    Installation,
    UpdateCandidate,
    UpdateState,
)
from shipyard.updater.resolver import UpdateResolver, match_asset, select_latest

__all__ = [
    "AssetKind",
    "CheckResult",
    "CheckStatus",
    "Installation",
    "UpdateCandidate",
    "UpdateResolver",
    "UpdateState",
    "match_asset",
    "select_latest",
]
