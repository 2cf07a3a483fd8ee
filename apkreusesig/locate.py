# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import gzip
import logging
import tarfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from apkreusesig.errors import FORMAT_ERROR, IO_ERROR, NOT_FOUND, PATH_ERROR, ReuseSigError
from apkreusesig.log import TRACE

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = ".SIGN."


@dataclass(frozen=True)
class FromImage:
	path: Path
	arch: str


@dataclass(frozen=True)
class FromIndex:
	path: Path


@dataclass(frozen=True)
class FromFile:
	path: Path


SourceDescriptor = Union[FromImage, FromIndex, FromFile]


@dataclass(frozen=True)
class SignatureEntry:
	name: str
	content: bytes


def image_index_path(arch: str) -> str:
	return f"./apks/{arch}/APKINDEX.tar.gz"


def _iter_entries(stream: BinaryIO, what: str, path: str | None) -> Iterator[tuple[tarfile.TarFile, tarfile.TarInfo]]:
	"""
	Stream the members of a gzip-compressed tar archive in stored order.

	The gzip layer accepts multi-member streams, so a signed index (signature
	member followed by the index member) reads as one continuous tar stream.
	"""
	try:
		gz = gzip.GzipFile(fileobj=stream, mode="rb")
		with tarfile.open(fileobj=gz, mode="r|") as tf:
			for member in tf:
				yield tf, member
	except ReuseSigError:
		raise
	except (gzip.BadGzipFile, zlib.error, EOFError) as err:
		raise ReuseSigError(FORMAT_ERROR, f"failed to read {what} as gzip", path=path) from err
	except tarfile.TarError as err:
		raise ReuseSigError(FORMAT_ERROR, f"failed to read {what} as tar archive", path=path) from err
	except OSError as err:
		raise ReuseSigError(IO_ERROR, f"failed to read {what}", path=path) from err


def locate_in_index(stream: BinaryIO, path: str | None = None) -> SignatureEntry:
	"""Return the first member of a gzip tar whose name starts with `.SIGN.`."""
	logger.info("Searching for signature in APKINDEX.tar.gz")
	entries = _iter_entries(stream, "index", path)
	try:
		for tf, member in entries:
			logger.debug("Reading entry in index: %r", member.name)
			if not member.name.startswith(SIGNATURE_PREFIX):
				continue
			if not member.isreg():
				raise ReuseSigError(FORMAT_ERROR, f"signature entry is not a regular file: {member.name}", path=path)
			fileobj = tf.extractfile(member)
			assert fileobj is not None
			try:
				content = fileobj.read()
			except (gzip.BadGzipFile, zlib.error, EOFError, tarfile.TarError) as err:
				raise ReuseSigError(FORMAT_ERROR, f"failed to read signature entry {member.name}", path=path) from err
			except OSError as err:
				raise ReuseSigError(IO_ERROR, f"failed to read signature entry {member.name}", path=path) from err
			return SignatureEntry(name=member.name, content=content)
	finally:
		entries.close()
	raise ReuseSigError(NOT_FOUND, "no signature found in APKINDEX.tar.gz", path=path)


def locate_in_image(path: Path, arch: str) -> SignatureEntry:
	needle = image_index_path(arch)
	try:
		f = open(path, "rb")
	except OSError as err:
		raise ReuseSigError(IO_ERROR, "failed to open image", path=str(path)) from err

	with f:
		logger.info("Searching for APKINDEX.tar.gz in image")
		entries = _iter_entries(f, "image", str(path))
		try:
			for tf, member in entries:
				logger.debug("Reading entry in image: %r", member.name)
				if member.name != needle:
					continue
				logger.info("Found index: %r", member.name)
				if not member.isreg():
					raise ReuseSigError(FORMAT_ERROR, f"index entry is not a regular file: {member.name}", path=str(path))
				nested = tf.extractfile(member)
				assert nested is not None
				return locate_in_index(nested, path=f"{path}:{member.name}")
		finally:
			entries.close()
	raise ReuseSigError(NOT_FOUND, f"index not found in image: {needle}", path=str(path))


def locate_in_file(path: Path) -> SignatureEntry:
	name = Path(path).name
	if name in ("", ".", ".."):
		raise ReuseSigError(PATH_ERROR, "failed to determine filename", path=str(path))
	try:
		content = Path(path).read_bytes()
	except OSError as err:
		raise ReuseSigError(IO_ERROR, "failed to read signature file", path=str(path)) from err
	return SignatureEntry(name=name, content=content)


def locate_signature(source: SourceDescriptor) -> SignatureEntry:
	if isinstance(source, FromImage):
		entry = locate_in_image(source.path, source.arch)
	elif isinstance(source, FromIndex):
		try:
			f = open(source.path, "rb")
		except OSError as err:
			raise ReuseSigError(IO_ERROR, "failed to open index", path=str(source.path)) from err
		with f:
			entry = locate_in_index(f, path=str(source.path))
	elif isinstance(source, FromFile):
		entry = locate_in_file(source.path)
	else:
		raise TypeError(f"unsupported signature source: {source!r}")

	logger.info("Found signature %r", entry.name)
	logger.debug("Signature content: %r", entry.content)
	logger.log(TRACE, "Signature is %d bytes", len(entry.content))
	return entry
