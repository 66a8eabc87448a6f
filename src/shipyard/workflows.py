"""Bootstrap of the remote job definitions (GitHub Actions workflows).

The disk-image job lives in the project's ``.github/workflows`` directory. A
bundled zip of the workflow files lets a fresh project get them in place
with one call; the bundle can be regenerated from a project that already
has them.
"""

from __future__ import annotations

import zipfile
from pathlib import Path

from shipyard.archive import verify_archive
from shipyard.constants import WORKFLOWS_BUNDLE, WORKFLOWS_DIR
from shipyard.errors import IntegrityError
from shipyard.logging import get_logger

log = get_logger("shipyard.workflows")


def ensure_workflows(project_dir: Path, bundle: Path | None = None) -> list[Path]:
    """Extract the workflow bundle into *project_dir* if workflows are absent.

    Returns the extracted files; an empty list means nothing was done
    because the workflows directory already exists.
    """
    target_dir = project_dir / WORKFLOWS_DIR
    if target_dir.exists():
        log.debug("workflows_present", path=str(target_dir))
        return []

    bundle = bundle or project_dir / WORKFLOWS_BUNDLE
    if not bundle.is_file():
        raise FileNotFoundError(
            f"Workflow bundle not found: {bundle}. Run 'shipyard setup-workflows --regenerate' "
            "in a project that has workflow files."
        )
    verify_archive(bundle)

    root = project_dir.resolve()
    extracted: list[Path] = []
    with zipfile.ZipFile(bundle) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            destination = (root / info.filename).resolve()
            if root not in destination.parents:
                raise IntegrityError(f"Bundle entry escapes project directory: {info.filename}")
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(zf.read(info))
            extracted.append(destination)
            log.debug("workflow_extracted", entry=info.filename)

    log.info("workflows_installed", path=str(target_dir), files=len(extracted))
    return extracted


def regenerate_bundle(project_dir: Path, bundle: Path | None = None) -> Path:
    """Rebuild the bundle from the project's ``*.yml`` workflow files."""
    source_dir = project_dir / WORKFLOWS_DIR
    if not source_dir.is_dir():
        raise FileNotFoundError(f"No workflows directory found to package: {source_dir}")

    files = sorted(source_dir.glob("*.yml"))
    if not files:
        raise FileNotFoundError(f"No workflow files (*.yml) found in {source_dir}")

    bundle = bundle or project_dir / WORKFLOWS_BUNDLE
    bundle.parent.mkdir(parents=True, exist_ok=True)
    tmp = bundle.with_suffix(".tmp")
    with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path in files:
            zf.write(path, f"{WORKFLOWS_DIR}/{path.name}")
    tmp.replace(bundle)

    log.info("workflow_bundle_regenerated", bundle=str(bundle), files=len(files))
    return bundle
