# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Trim a tar stream down to a fragment that can be concatenated in front of
another tar stream (the `abuild-tar --cut` transform).

Semantics (pinned):
- records are copied header by header; each member's data is copied
  rounded up to the 512-byte block size
- the first all-zero header block is the end-of-archive marker; it and
  everything after it (second trailer block, record padding) is dropped
- every copied header has its checksum re-validated
- extended headers (pax x/g, GNU L/K) are ordinary records and pass through
"""
from __future__ import annotations

import io
import sys
from typing import BinaryIO

from apkreusesig.errors import FORMAT_ERROR, IO_ERROR, ReuseSigError

BLOCK_SIZE = 512
_CHKSUM = slice(148, 156)
_SIZE = slice(124, 136)
_COPY_CHUNK = 64 * 1024


def _read_exact(src: BinaryIO, n: int) -> bytes:
	chunks: list[bytes] = []
	remaining = n
	while remaining > 0:
		chunk = src.read(remaining)
		if not chunk:
			break
		chunks.append(chunk)
		remaining -= len(chunk)
	return b"".join(chunks)


def parse_number(field: bytes) -> int:
	"""Decode a numeric header field (octal text or GNU base-256)."""
	if field and field[0] & 0x80:
		# base-256: 0x80 marks positive, 0xff negative (two's complement)
		value = int.from_bytes(field[1:], "big")
		if field[0] == 0xFF:
			value -= 256 ** (len(field) - 1)
		return value
	text = field.split(b"\0", 1)[0].strip(b" ")
	if not text:
		return 0
	try:
		return int(text, 8)
	except ValueError as err:
		raise ReuseSigError(FORMAT_ERROR, f"invalid numeric header field: {field!r}") from err


def header_checksums(header: bytes) -> tuple[int, int]:
	"""Return the (unsigned, signed) checksums of a header block."""
	unsigned = sum(header[:148]) + 8 * 0x20 + sum(header[156:])
	signed = sum(b - 256 if b > 127 else b for b in header[:148]) + 8 * 0x20
	signed += sum(b - 256 if b > 127 else b for b in header[156:])
	return unsigned, signed


def _check_header(header: bytes, offset: int) -> int:
	stored = parse_number(header[_CHKSUM])
	if stored not in header_checksums(header):
		raise ReuseSigError(FORMAT_ERROR, f"tar header checksum mismatch at offset {offset}")
	size = parse_number(header[_SIZE])
	if size < 0:
		raise ReuseSigError(FORMAT_ERROR, f"negative member size at offset {offset}")
	return size


def cut_stream(src: BinaryIO, dst: BinaryIO) -> int:
	"""
	Copy tar records from `src` to `dst`, stopping at the end-of-archive
	marker. Returns the number of bytes written.
	"""
	written = 0
	while True:
		header = _read_exact(src, BLOCK_SIZE)
		if not header:
			break
		if len(header) != BLOCK_SIZE:
			raise ReuseSigError(FORMAT_ERROR, f"truncated tar header at offset {written}")
		if header.count(0) == BLOCK_SIZE:
			break
		size = _check_header(header, written)
		dst.write(header)
		written += BLOCK_SIZE

		remaining = -(-size // BLOCK_SIZE) * BLOCK_SIZE
		while remaining > 0:
			chunk = src.read(min(remaining, _COPY_CHUNK))
			if not chunk:
				raise ReuseSigError(FORMAT_ERROR, f"truncated tar member data at offset {written}")
			dst.write(chunk)
			written += len(chunk)
			remaining -= len(chunk)
	return written


def cut_bytes(data: bytes) -> bytes:
	out = io.BytesIO()
	cut_stream(io.BytesIO(data), out)
	return out.getvalue()


def main() -> int:
	try:
		cut_stream(sys.stdin.buffer, sys.stdout.buffer)
		sys.stdout.buffer.flush()
	except ReuseSigError as err:
		print(f"tarcut: {err}", file=sys.stderr)
		return 1
	except OSError as err:
		print(f"tarcut: {ReuseSigError(IO_ERROR, str(err))}", file=sys.stderr)
		return 1
	return 0


if __name__ == "__main__":
	sys.exit(main())
