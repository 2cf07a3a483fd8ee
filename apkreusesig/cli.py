# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from apkreusesig.config import load_config
from apkreusesig.errors import ReuseSigError, format_cause_chain
from apkreusesig.locate import FromFile, FromImage, FromIndex, SourceDescriptor, locate_signature
from apkreusesig.log import configure_logging
from apkreusesig.sign import SignOptions, sign_archive


def _add_log_flags(p: argparse.ArgumentParser) -> None:
	# SUPPRESS keeps a flag given before the subcommand from being reset by
	# the subparser's defaults.
	p.add_argument("-q", "--quiet", action="store_true", default=argparse.SUPPRESS, help="Only show warnings")
	p.add_argument("-v", "--verbose", action="count", default=argparse.SUPPRESS, help="More verbose logs (repeatable)")


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(
		prog="abuild-reusesig",
		description="Sign an APKINDEX.tar.gz by reusing an existing signature",
	)
	_add_log_flags(p)
	p.add_argument("--index-path", type=Path, required=True, help="The index that should be signed")
	p.add_argument(
		"--output-path",
		type=Path,
		required=True,
		help="The path the signed index should be written to, may be equal to --index-path",
	)
	sub = p.add_subparsers(dest="cmd", required=True)

	from_image = sub.add_parser("from-image", help="Copy the signature from an APKINDEX.tar.gz inside an image")
	_add_log_flags(from_image)
	from_image.add_argument("path", type=Path, help="Path to the image")
	from_image.add_argument("--arch", type=str, required=True, help="The architecture")

	from_index = sub.add_parser("from-index", help="Copy the signature from another signed APKINDEX.tar.gz")
	_add_log_flags(from_index)
	from_index.add_argument("path", type=Path, help="Path to APKINDEX.tar.gz")

	from_file = sub.add_parser("from-file", help="Copy the signature from a file")
	_add_log_flags(from_file)
	from_file.add_argument("path", type=Path, help="Path to the existing signature")
	return p


def _source_from_args(args: argparse.Namespace) -> SourceDescriptor:
	if args.cmd == "from-image":
		return FromImage(path=args.path, arch=args.arch)
	if args.cmd == "from-index":
		return FromIndex(path=args.path)
	if args.cmd == "from-file":
		return FromFile(path=args.path)
	raise AssertionError("unreachable")


def main(argv: list[str] | None = None) -> int:
	p = _build_parser()
	args = p.parse_args(argv)
	configure_logging(quiet=bool(getattr(args, "quiet", False)), verbose=int(getattr(args, "verbose", 0) or 0))

	try:
		entry = locate_signature(_source_from_args(args))
		opts = SignOptions(
			index_path=args.index_path,
			output_path=args.output_path,
			sig_name=entry.name,
			sig=entry.content,
			config=load_config(),
		)
		sign_archive(opts)
	except ReuseSigError as err:
		lines = format_cause_chain(err)
		print(f"error: {lines[0]}", file=sys.stderr)
		for line in lines[1:]:
			print(f"  {line}", file=sys.stderr)
		return 2
	return 0
