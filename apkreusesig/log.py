# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import logging
import sys

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

PACKAGE_LOGGER = "apkreusesig"

_FORMAT = "[%(asctime)s %(levelname)-5s %(name)s] %(message)s"


def levels_for(quiet: bool, verbose: int) -> tuple[int, int]:
	"""
	Map -q/-v flags to (root level, package level).

	-v raises detail for this package first, -vv for everything, -vvv adds
	trace output for this package.
	"""
	if quiet:
		return logging.WARNING, logging.WARNING
	if verbose <= 0:
		return logging.INFO, logging.INFO
	if verbose == 1:
		return logging.INFO, logging.DEBUG
	if verbose == 2:
		return logging.DEBUG, logging.DEBUG
	return logging.DEBUG, TRACE


def configure_logging(quiet: bool = False, verbose: int = 0) -> None:
	root_level, pkg_level = levels_for(quiet, verbose)
	handler = logging.StreamHandler(sys.stderr)
	handler.setFormatter(logging.Formatter(_FORMAT))
	root = logging.getLogger()
	for old in list(root.handlers):
		root.removeHandler(old)
	root.addHandler(handler)
	root.setLevel(root_level)
	logging.getLogger(PACKAGE_LOGGER).setLevel(pkg_level)
