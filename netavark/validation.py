"""Checks on paths handed to netavark."""

from __future__ import annotations

import logging
import os

from netavark.errors import NetavarkError

log = logging.getLogger(__name__)


def ns_checks(path: str | os.PathLike[str]) -> os.stat_result:
    """Make sure the network namespace path can be opened; return its metadata."""
    log.debug("Validating network namespace...")
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError as err:
        raise NetavarkError.wrap(f"open {os.fspath(path)}", err) from err
    try:
        return os.fstat(fd)
    except OSError as err:
        raise NetavarkError.wrap(f"stat {os.fspath(path)}", err) from err
    finally:
        os.close(fd)