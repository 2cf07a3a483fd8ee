# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
apkreusesig: sign an APKINDEX.tar.gz by reusing an existing signature.

Modules:
  locate: find the signature in an image, a signed index or a bare file
  sign: rebuild the signature fragment and prepend it to an unsigned index
  tarcut: strip the end-of-archive trailer from a tar stream
  pipeline: run external programs as a shell-style pipeline
"""

__all__ = ["cli", "config", "errors", "locate", "log", "pipeline", "sign", "tarcut"]
