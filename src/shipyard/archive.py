"""Archive service: compress build output, verify and extract update archives.

Compression and decompression are delegated to :mod:`zipfile`; this module
adds exclusion patterns, integrity checks, path-traversal protection, and
the bounded retry policy used while the archive may still be settling on
disk.
"""

from __future__ import annotations

import asyncio
import fnmatch
import os
import shutil
import stat
import zipfile
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from shipyard.commands import retry_async
from shipyard.errors import IntegrityError
from shipyard.logging import get_logger

log = get_logger("shipyard.archive")

ProgressCallback = Callable[[float], None]


def _is_excluded(name: str, patterns: Iterable[str]) -> bool:
    lowered = name.lower()
    return any(fnmatch.fnmatchcase(lowered, pattern.lower()) for pattern in patterns)


def _iter_files(source: Path, exclude: tuple[str, ...]) -> Iterator[Path]:
    """Yield files under *source* in a stable order, pruning excluded names."""
    for root, dirs, files in os.walk(source):
        kept_dirs = []
        for dirname in sorted(dirs):
            if _is_excluded(dirname, exclude):
                log.debug("archive_dir_excluded", path=str(Path(root, dirname)))
                continue
            kept_dirs.append(dirname)
        dirs[:] = kept_dirs
        for filename in sorted(files):
            if _is_excluded(filename, exclude):
                log.debug("archive_file_excluded", path=str(Path(root, filename)))
                continue
            yield Path(root, filename)


def count_files(directory: Path) -> int:
    """Number of regular files below *directory*."""
    if not directory.is_dir():
        return 0
    return sum(1 for path in directory.rglob("*") if path.is_file())


def compress_directory(
    source: Path,
    archive: Path,
    exclude: Iterable[str] = (),
) -> Path:
    """Create a zip archive of *source*'s contents at *archive*.

    An existing archive is replaced. Entry paths are relative to *source*.
    Unix permission bits are preserved so executables stay executable.
    """
    if not source.is_dir():
        raise FileNotFoundError(f"Source directory does not exist: {source}")

    patterns = tuple(exclude)
    archive.parent.mkdir(parents=True, exist_ok=True)
    if archive.exists():
        archive.unlink()

    entries = 0
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path in _iter_files(source, patterns):
            zf.write(path, path.relative_to(source).as_posix())
            entries += 1

    if entries == 0:
        archive.unlink(missing_ok=True)
        raise IntegrityError(f"Nothing to archive in {source}")

    verify_archive(archive)
    log.info("archive_created", archive=str(archive), entries=entries, excluded=list(patterns))
    return archive


def verify_archive(archive: Path) -> int:
    """Check that *archive* exists, opens, is non-empty and has valid CRCs.

    Returns the number of entries. Raises ``FileNotFoundError`` if the file
    is missing and ``IntegrityError`` if it is empty or corrupt.
    """
    if not archive.is_file():
        raise FileNotFoundError(f"Archive not found: {archive}")
    try:
        with zipfile.ZipFile(archive) as zf:
            names = zf.namelist()
            if not names:
                raise IntegrityError(f"Archive is empty: {archive}")
            bad = zf.testzip()
            if bad is not None:
                raise IntegrityError(f"Archive entry failed CRC check: {bad}")
            return len(names)
    except zipfile.BadZipFile as err:
        raise IntegrityError(f"Archive is corrupted: {archive}: {err}") from err


def _safe_target(destination: Path, member: str) -> Path:
    target = (destination / member).resolve()
    root = destination.resolve()
    if target != root and root not in target.parents:
        raise IntegrityError(f"Archive entry escapes destination: {member}")
    return target


def _extract_once(
    archive: Path,
    destination: Path,
    on_progress: ProgressCallback | None,
) -> int:
    verify_archive(archive)

    if destination.exists():
        shutil.rmtree(destination)
    destination.mkdir(parents=True)

    try:
        with zipfile.ZipFile(archive) as zf:
            members = [info for info in zf.infolist() if not info.is_dir()]
            total = len(members) or 1
            for index, info in enumerate(members, start=1):
                target = _safe_target(destination, info.filename)
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, target.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
                mode = (info.external_attr >> 16) & 0o777
                if mode:
                    target.chmod(mode | stat.S_IRUSR | stat.S_IWUSR)
                if on_progress is not None:
                    on_progress(index / total)
    except Exception:
        shutil.rmtree(destination, ignore_errors=True)
        raise

    extracted = count_files(destination)
    if extracted == 0:
        shutil.rmtree(destination, ignore_errors=True)
        raise IntegrityError(f"No files were extracted from {archive}")
    return extracted


async def extract_archive(
    archive: Path,
    destination: Path,
    on_progress: ProgressCallback | None = None,
    *,
    attempts: int = 3,
    delay: float = 1.0,
) -> int:
    """Extract *archive* into *destination*, replacing any previous contents.

    Retries while the archive is missing, locked, or fails verification.
    On final failure no partial output is left behind. Returns the number of
    files extracted.
    """

    async def _attempt() -> int:
        return await asyncio.to_thread(_extract_once, archive, destination, on_progress)

    extracted = await retry_async(
        _attempt, attempts=attempts, delay=delay, label=f"extract {archive.name}"
    )
    log.info(
        "archive_extracted",
        archive=str(archive),
        destination=str(destination),
        files=extracted,
    )
    return extracted


async def compress_directory_async(
    source: Path,
    archive: Path,
    exclude: Iterable[str] = (),
) -> Path:
    return await asyncio.to_thread(compress_directory, source, archive, tuple(exclude))
