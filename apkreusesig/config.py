# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import os
import re
import shlex
import sys
from dataclasses import dataclass, field
from typing import Mapping

SOURCE_DATE_EPOCH_VAR = "SOURCE_DATE_EPOCH"
TAR_VAR = "ABUILD_REUSESIG_TAR"
TARCUT_VAR = "ABUILD_REUSESIG_TARCUT"
GZIP_VAR = "ABUILD_REUSESIG_GZIP"

_EPOCH_RE = re.compile(r"[+-]?[0-9]+")
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1


def default_tarcut_command() -> list[str]:
	return [sys.executable, "-m", "apkreusesig.tarcut"]


@dataclass(frozen=True)
class ReuseSigConfig:
	source_date_epoch: int | None = None
	tar_command: list[str] = field(default_factory=lambda: ["tar"])
	tarcut_command: list[str] = field(default_factory=default_tarcut_command)
	gzip_command: list[str] = field(default_factory=lambda: ["gzip"])


def parse_source_date_epoch(raw: str | None) -> int | None:
	"""
	Parse a SOURCE_DATE_EPOCH value.

	Accepted: a signed 64-bit decimal integer with an optional sign and no
	surrounding whitespace. Anything else means "not set".
	"""
	if raw is None or not _EPOCH_RE.fullmatch(raw):
		return None
	value = int(raw)
	if value < _I64_MIN or value > _I64_MAX:
		return None
	return value


def _command_from_env(environ: Mapping[str, str], name: str, default: list[str]) -> list[str]:
	raw = environ.get(name)
	if raw is None or not raw.strip():
		return default
	return shlex.split(raw)


def load_config(environ: Mapping[str, str] | None = None) -> ReuseSigConfig:
	env = os.environ if environ is None else environ
	defaults = ReuseSigConfig()
	return ReuseSigConfig(
		source_date_epoch=parse_source_date_epoch(env.get(SOURCE_DATE_EPOCH_VAR)),
		tar_command=_command_from_env(env, TAR_VAR, defaults.tar_command),
		tarcut_command=_command_from_env(env, TARCUT_VAR, defaults.tarcut_command),
		gzip_command=_command_from_env(env, GZIP_VAR, defaults.gzip_command),
	)
