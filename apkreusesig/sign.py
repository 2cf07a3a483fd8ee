# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from apkreusesig.config import ReuseSigConfig, default_tarcut_command
from apkreusesig.errors import IO_ERROR, PATH_ERROR, ReuseSigError
from apkreusesig.pipeline import PipelineStage, run_pipeline

logger = logging.getLogger(__name__)

SIGNED_INDEX_MODE = 0o644


@dataclass(frozen=True)
class SignOptions:
	index_path: Path
	output_path: Path
	sig_name: str
	sig: bytes
	config: ReuseSigConfig = field(default_factory=ReuseSigConfig)


def _check_sig_name(sig_name: str) -> str:
	p = PurePosixPath(sig_name)
	if not sig_name or p.is_absolute() or str(p) == ".":
		raise ReuseSigError(PATH_ERROR, f"signature name must be a non-empty relative path, got: {sig_name!r}")
	if ".." in p.parts:
		raise ReuseSigError(PATH_ERROR, f"signature name must not contain '..', got: {sig_name!r}")
	return sig_name


def _tarcut_env(tarcut_command: list[str]) -> dict[str, str] | None:
	"""Let the bundled `python -m apkreusesig.tarcut` stage import this package."""
	if list(tarcut_command) != default_tarcut_command():
		return None
	env = dict(os.environ)
	root = str(Path(__file__).resolve().parent.parent)
	existing = env.get("PYTHONPATH")
	env["PYTHONPATH"] = root if not existing else os.pathsep.join([root, existing])
	return env


def fragment_stages(workdir: Path, sig_name: str, config: ReuseSigConfig) -> list[PipelineStage]:
	"""tar | tarcut | gzip, as in `tar -f - -c "$sig" | abuild-tar --cut | $gzip -n -9`."""
	return [
		PipelineStage(
			name="tar",
			argv=[
				*config.tar_command,
				"--owner=0",
				"--group=0",
				"--numeric-owner",
				"-C",
				str(workdir),
				"-f",
				"-",
				"-c",
				"--",
				sig_name,
			],
		),
		PipelineStage(name="tarcut", argv=list(config.tarcut_command), env=_tarcut_env(config.tarcut_command)),
		PipelineStage(name="gzip", argv=[*config.gzip_command, "-n", "-9"]),
	]


def _write_signature_file(workdir: Path, sig_name: str, sig: bytes, mtime: int | None) -> Path:
	sig_path = workdir / sig_name
	logger.debug("Writing signature to file: %s", sig_path)
	try:
		sig_path.parent.mkdir(parents=True, exist_ok=True)
		sig_path.write_bytes(sig)
		if mtime is not None:
			logger.debug("Changing mtime of %s to %d", sig_path, mtime)
			st = sig_path.stat()
			os.utime(sig_path, ns=(st.st_atime_ns, mtime * 1_000_000_000))
	except OSError as err:
		raise ReuseSigError(IO_ERROR, "failed to write signature file", path=str(sig_path)) from err
	return sig_path


def _replace_output(output_path: Path, data: bytes) -> None:
	"""Write `data` beside `output_path`, chmod 644, then rename over it."""
	out_dir = output_path.parent
	try:
		fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.name}.", dir=out_dir)
	except OSError as err:
		raise ReuseSigError(IO_ERROR, "failed to write signed index", path=str(output_path)) from err
	tmp_path = Path(tmp_name)
	try:
		with os.fdopen(fd, "wb") as f:
			f.write(data)
		logger.debug("Changing mode to 644")
		os.chmod(tmp_path, SIGNED_INDEX_MODE)
		os.replace(tmp_path, output_path)
	except OSError as err:
		tmp_path.unlink(missing_ok=True)
		raise ReuseSigError(IO_ERROR, "failed to write signed index", path=str(output_path)) from err
	except BaseException:
		tmp_path.unlink(missing_ok=True)
		raise


def sign_archive(opts: SignOptions) -> None:
	"""
	Prepend `opts.sig` as a trimmed, gzip-compressed single-entry tar to the
	unsigned index and write the result to `opts.output_path`.

	The destination is only touched once everything else has succeeded, so
	`output_path` may equal `index_path`.
	"""
	sig_name = _check_sig_name(opts.sig_name)
	config = opts.config

	with tempfile.TemporaryDirectory(prefix="abuild-reusesig-") as tmp:
		workdir = Path(tmp)
		logger.debug("Created temporary directory: %s", workdir)
		_write_signature_file(workdir, sig_name, opts.sig, config.source_date_epoch)

		logger.info("Creating signed index with existing signature")
		signed_index = run_pipeline(fragment_stages(workdir, sig_name, config))

	logger.info("Appending package index: %s", opts.index_path)
	try:
		index_bytes = opts.index_path.read_bytes()
	except OSError as err:
		raise ReuseSigError(IO_ERROR, "failed to read index", path=str(opts.index_path)) from err

	logger.info("Writing signed index: %s", opts.output_path)
	_replace_output(opts.output_path, signed_index + index_bytes)
