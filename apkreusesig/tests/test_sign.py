# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import os
import stat
import sys
import time
from pathlib import Path

import pytest

from apkreusesig.config import ReuseSigConfig
from apkreusesig.errors import IO_ERROR, PATH_ERROR, PIPELINE_ERROR, ReuseSigError
from apkreusesig.locate import FromIndex, locate_signature
from apkreusesig.sign import SIGNED_INDEX_MODE, SignOptions, fragment_stages, sign_archive
from apkreusesig.tarcut import BLOCK_SIZE
from apkreusesig.test_helpers import have_archive_tools, make_tar_gz, read_tar_members, split_first_gzip_member

needs_tools = pytest.mark.skipif(not have_archive_tools(), reason="requires tar and gzip")

SIG_NAME = ".SIGN.RSA.builder-5f3c2a1b.rsa.pub"
SIG_BYTES = b"\x30\x82\x01\x00" + bytes(range(256))
EPOCH = 1700000000


def _sign(tmp_path: Path, *, sig_name: str = SIG_NAME, sig: bytes = SIG_BYTES, index: bytes = b"INDEXDATA", config: ReuseSigConfig | None = None) -> tuple[Path, bytes]:
	index_path = tmp_path / "APKINDEX.unsigned.tar.gz"
	index_path.write_bytes(index)
	out = tmp_path / "APKINDEX.tar.gz"
	sign_archive(
		SignOptions(
			index_path=index_path,
			output_path=out,
			sig_name=sig_name,
			sig=sig,
			config=config if config is not None else ReuseSigConfig(),
		)
	)
	return out, out.read_bytes()


@needs_tools
def test_sign_prepends_single_entry_fragment(tmp_path: Path) -> None:
	_out, data = _sign(tmp_path, sig_name="mysig", sig=b"SIGNATURE-BYTES", index=b"INDEXDATA")
	fragment, rest = split_first_gzip_member(data)
	assert rest == b"INDEXDATA"

	assert len(fragment) % BLOCK_SIZE == 0
	assert fragment[-BLOCK_SIZE:].count(0) != BLOCK_SIZE
	[(member, content)] = read_tar_members(fragment)
	assert member.name == "mysig"
	assert member.isfile()
	assert (member.uid, member.gid) == (0, 0)
	assert content == b"SIGNATURE-BYTES"


@needs_tools
def test_sign_gzip_header_has_no_name_or_timestamp(tmp_path: Path) -> None:
	_out, data = _sign(tmp_path)
	assert data[:3] == b"\x1f\x8b\x08"
	flags = data[3]
	assert flags & 0x08 == 0  # FNAME
	assert data[4:8] == b"\0\0\0\0"  # MTIME


@needs_tools
def test_sign_pins_mtime_from_source_date_epoch(tmp_path: Path) -> None:
	_out, data = _sign(tmp_path, config=ReuseSigConfig(source_date_epoch=EPOCH))
	fragment, _rest = split_first_gzip_member(data)
	[(member, _content)] = read_tar_members(fragment)
	assert member.mtime == EPOCH


@needs_tools
def test_sign_without_epoch_uses_current_mtime(tmp_path: Path) -> None:
	_out, data = _sign(tmp_path, config=ReuseSigConfig(source_date_epoch=None))
	fragment, _rest = split_first_gzip_member(data)
	[(member, _content)] = read_tar_members(fragment)
	assert abs(member.mtime - time.time()) < 600


@needs_tools
def test_sign_output_mode_is_0644(tmp_path: Path) -> None:
	out = tmp_path / "APKINDEX.tar.gz"
	out.write_bytes(b"old")
	os.chmod(out, 0o600)
	old_umask = os.umask(0o077)
	try:
		out, _data = _sign(tmp_path)
	finally:
		os.umask(old_umask)
	assert stat.S_IMODE(out.stat().st_mode) == SIGNED_INDEX_MODE


@needs_tools
def test_sign_in_place_overwrites_index(tmp_path: Path) -> None:
	index = tmp_path / "APKINDEX.tar.gz"
	index.write_bytes(b"INDEXDATA")
	sign_archive(SignOptions(index_path=index, output_path=index, sig_name="mysig", sig=b"SIGNATURE-BYTES"))
	_fragment, rest = split_first_gzip_member(index.read_bytes())
	assert rest == b"INDEXDATA"
	assert sorted(p.name for p in tmp_path.iterdir()) == ["APKINDEX.tar.gz"]


@needs_tools
def test_sign_missing_index_leaves_destination_untouched(tmp_path: Path) -> None:
	out = tmp_path / "APKINDEX.tar.gz"
	out.write_bytes(b"unrelated content")
	with pytest.raises(ReuseSigError) as exc:
		sign_archive(
			SignOptions(
				index_path=tmp_path / "missing.tar.gz",
				output_path=out,
				sig_name="mysig",
				sig=b"SIGNATURE-BYTES",
			)
		)
	assert exc.value.reason_code == IO_ERROR
	assert exc.value.path == str(tmp_path / "missing.tar.gz")
	assert out.read_bytes() == b"unrelated content"
	assert sorted(p.name for p in tmp_path.iterdir()) == ["APKINDEX.tar.gz"]


@needs_tools
def test_sign_nested_signature_name(tmp_path: Path) -> None:
	_out, data = _sign(tmp_path, sig_name="keys/.SIGN.RSA.k.pub", sig=b"s")
	fragment, _rest = split_first_gzip_member(data)
	names = [m.name for m, _ in read_tar_members(fragment)]
	assert names[-1] == "keys/.SIGN.RSA.k.pub"


@needs_tools
def test_extract_then_resign_is_idempotent(tmp_path: Path) -> None:
	unsigned = make_tar_gz([("DESCRIPTION", b"edge\n"), ("APKINDEX", b"P:musl\nV:1.2.4-r0\n\n")])
	config = ReuseSigConfig(source_date_epoch=EPOCH)

	first_dir = tmp_path / "first"
	first_dir.mkdir()
	signed_path, signed = _sign(first_dir, index=unsigned, config=config)

	entry = locate_signature(FromIndex(path=signed_path))
	assert entry.name == SIG_NAME
	assert entry.content == SIG_BYTES

	second_dir = tmp_path / "second"
	second_dir.mkdir()
	_resigned_path, resigned = _sign(second_dir, sig_name=entry.name, sig=entry.content, index=unsigned, config=config)
	assert resigned == signed
	assert resigned[: len(resigned) - len(unsigned)] == signed[: len(signed) - len(unsigned)]
	assert resigned.endswith(unsigned)


def test_sign_pipeline_failure_names_stage_and_keeps_destination(tmp_path: Path) -> None:
	index = tmp_path / "APKINDEX.unsigned.tar.gz"
	index.write_bytes(b"INDEXDATA")
	out = tmp_path / "APKINDEX.tar.gz"
	out.write_bytes(b"previous")
	config = ReuseSigConfig(
		tar_command=[sys.executable, "-c", "import sys; sys.exit(2)"],
		gzip_command=[sys.executable, "-c", "import sys; sys.stdout.buffer.write(sys.stdin.buffer.read())"],
	)
	with pytest.raises(ReuseSigError) as exc:
		sign_archive(SignOptions(index_path=index, output_path=out, sig_name="mysig", sig=b"x", config=config))
	assert exc.value.reason_code == PIPELINE_ERROR
	assert exc.value.stage == "tar"
	assert exc.value.exit_status == 2
	assert out.read_bytes() == b"previous"


@pytest.mark.parametrize("bad", ["", "/etc/passwd", "../escape", "a/../../b", "."])
def test_sign_rejects_unsafe_signature_names(tmp_path: Path, bad: str) -> None:
	with pytest.raises(ReuseSigError) as exc:
		sign_archive(SignOptions(index_path=tmp_path / "i", output_path=tmp_path / "o", sig_name=bad, sig=b"x"))
	assert exc.value.reason_code == PATH_ERROR


def test_fragment_stages_mirror_reference_pipeline(tmp_path: Path) -> None:
	config = ReuseSigConfig(tar_command=["bsdtar"], tarcut_command=["abuild-tar", "--cut"], gzip_command=["pigz"])
	tar, cut, gz = fragment_stages(tmp_path, "mysig", config)
	assert tar.argv == [
		"bsdtar",
		"--owner=0",
		"--group=0",
		"--numeric-owner",
		"-C",
		str(tmp_path),
		"-f",
		"-",
		"-c",
		"--",
		"mysig",
	]
	assert cut.argv == ["abuild-tar", "--cut"]
	assert cut.env is None
	assert gz.argv == ["pigz", "-n", "-9"]
	assert [s.name for s in (tar, cut, gz)] == ["tar", "tarcut", "gzip"]


def test_fragment_stages_default_tarcut_gets_package_on_pythonpath(tmp_path: Path) -> None:
	_tar, cut, _gz = fragment_stages(tmp_path, "mysig", ReuseSigConfig())
	assert cut.argv == [sys.executable, "-m", "apkreusesig.tarcut"]
	assert cut.env is not None
	root = str(Path(__file__).resolve().parents[2])
	assert cut.env["PYTHONPATH"].split(os.pathsep)[0] == root


@needs_tools
def test_sign_signature_name_starting_with_dash(tmp_path: Path) -> None:
	_out, data = _sign(tmp_path, sig_name="-mysig", sig=b"SIGNATURE-BYTES")
	fragment, rest = split_first_gzip_member(data)
	assert rest == b"INDEXDATA"
	[(member, content)] = read_tar_members(fragment)
	assert member.name == "-mysig"
	assert content == b"SIGNATURE-BYTES"
