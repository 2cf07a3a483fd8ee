# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

from apkreusesig.errors import PIPELINE_ERROR, ReuseSigError

logger = logging.getLogger(__name__)

_TERMINATE_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class PipelineStage:
	name: str
	argv: list[str]
	env: Mapping[str, str] | None = None


def _terminate_all(procs: Sequence[subprocess.Popen[bytes]]) -> None:
	for proc in procs:
		if proc.poll() is None:
			proc.terminate()
	for proc in procs:
		if proc.stdout is not None:
			proc.stdout.close()
		try:
			proc.wait(timeout=_TERMINATE_GRACE_SECONDS)
		except subprocess.TimeoutExpired:
			proc.kill()
			proc.wait()


def check_exit(stage: PipelineStage, status: int) -> None:
	logger.debug("Child exited with status %r: %d", stage.name, status)
	if status != 0:
		raise ReuseSigError(
			PIPELINE_ERROR,
			f"command failed: {stage.name} exited with status {status}",
			stage=stage.name,
			exit_status=status,
		)


def run_pipeline(stages: Sequence[PipelineStage]) -> bytes:
	"""
	Run `stages` as a shell-style pipeline and return the last stage's stdout.

	Each stage reads the previous stage's stdout through an OS pipe. All
	stages are joined before any exit status is examined; when more than one
	stage failed, the most upstream one is reported. Live children are
	terminated if anything goes wrong while they run, KeyboardInterrupt
	included.
	"""
	if not stages:
		raise ValueError("pipeline needs at least one stage")

	procs: list[subprocess.Popen[bytes]] = []
	try:
		upstream = None
		for stage in stages:
			logger.debug("Spawning %s: %s", stage.name, stage.argv)
			try:
				proc = subprocess.Popen(
					stage.argv,
					stdin=upstream if upstream is not None else subprocess.DEVNULL,
					stdout=subprocess.PIPE,
					env=dict(stage.env) if stage.env is not None else None,
				)
			except OSError as err:
				raise ReuseSigError(
					PIPELINE_ERROR,
					f"failed to spawn {stage.name}",
					stage=stage.name,
				) from err
			finally:
				# the child holds its own copy; ours would keep the pipe open
				if upstream is not None:
					upstream.close()
			procs.append(proc)
			upstream = proc.stdout

		last = procs[-1]
		assert last.stdout is not None
		output = last.stdout.read()
		last.stdout.close()
		statuses = [proc.wait() for proc in procs]
	except BaseException:
		_terminate_all(procs)
		raise

	for stage, status in zip(stages, statuses):
		check_exit(stage, status)
	return output
