"""Compress a finished run directory into <run>.tar.gz."""

from __future__ import annotations

import logging
import shutil
import tarfile
from pathlib import Path

from kube_snapshot.runner.report import format_size

logger = logging.getLogger(__name__)


def create_archive(directory: str | Path, remove_source: bool = False) -> Path:
    """Write directory as a gzip tarball beside it; optionally delete the directory afterwards."""
    directory = Path(directory)
    archive = directory.with_name(f"{directory.name}.tar.gz")
    logger.info("Compressing backup...")
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(directory, arcname=directory.name)
    logger.info("Compressed backup created: %s (%s)", archive, format_size(archive.stat().st_size))
    if remove_source:
        shutil.rmtree(directory)
    return archive
