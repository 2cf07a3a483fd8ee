# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

IO_ERROR = "IO_ERROR"
FORMAT_ERROR = "FORMAT_ERROR"
NOT_FOUND = "NOT_FOUND"
PATH_ERROR = "PATH_ERROR"
PIPELINE_ERROR = "PIPELINE_ERROR"


@dataclass(eq=False)
class ReuseSigError(Exception):
	"""
	A structured error for signature reuse.

	`reason_code` is stable and machine-checkable; the remaining fields carry
	the context needed for a useful diagnostic (which file, which stage).
	"""

	reason_code: str
	message: str
	path: str | None = None
	stage: str | None = None
	exit_status: int | None = None

	def __str__(self) -> str:
		return self.format_human()

	def to_dict(self) -> dict[str, Any]:
		return {
			"reason_code": self.reason_code,
			"message": self.message,
			"path": self.path,
			"stage": self.stage,
			"exit_status": self.exit_status,
		}

	def format_human(self) -> str:
		parts: list[str] = [f"[{self.reason_code}] {self.message}"]
		if self.path:
			parts.append(f"path={self.path}")
		if self.stage:
			parts.append(f"stage={self.stage}")
		if self.exit_status is not None:
			parts.append(f"exit_status={self.exit_status}")
		return " ".join(parts)


def format_cause_chain(err: BaseException) -> list[str]:
	"""Render `err` and its explicit causes, outermost first."""
	lines = [str(err) or type(err).__name__]
	seen = {id(err)}
	cause = err.__cause__
	while cause is not None and id(cause) not in seen:
		seen.add(id(cause))
		text = str(cause) or type(cause).__name__
		lines.append(f"caused by: {text}")
		cause = cause.__cause__
	return lines
