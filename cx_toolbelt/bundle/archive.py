"""Gzip tar archives for formation bundles."""

from __future__ import annotations

import logging
import tarfile
from pathlib import Path
from typing import Union

from ..errors import BundleError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def tar_directory(src_dir: PathLike, dest_file: PathLike) -> Path:
    """Write ``src_dir`` into a gzip tarball rooted at the directory's basename."""
    src = Path(src_dir)
    dest = Path(dest_file)
    if not src.is_dir():
        raise BundleError(f"{src} is not a directory")
    with tarfile.open(dest, "w:gz") as tar:
        tar.add(src, arcname=src.name)
    logger.debug("archived %s into %s", src, dest)
    return dest


def untar(archive_file: PathLike, dest_dir: PathLike) -> Path:
    """Extract a gzip tarball into ``dest_dir``.

    Raises:
        BundleError: The archive cannot be read, or a member would land outside ``dest_dir``.
    """
    dest = Path(dest_dir).resolve()
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_file, "r:*") as tar:
            members = tar.getmembers()
            for member in members:
                target = (dest / member.name).resolve()
                if target != dest and dest not in target.parents:
                    raise BundleError(f"refusing to extract {member.name}: outside of {dest}")
                if member.issym() or member.islnk():
                    raise BundleError(f"refusing to extract link {member.name}")
            if hasattr(tarfile, "data_filter"):
                tar.extractall(dest, members=members, filter="data")
            else:
                tar.extractall(dest, members=members)
    except (tarfile.TarError, FileNotFoundError) as e:
        raise BundleError(f"unable to extract {archive_file}: {e}") from e
    logger.debug("extracted %s into %s", archive_file, dest)
    return dest
