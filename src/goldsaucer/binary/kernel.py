"""KERNEL.BIN archive codec.

The archive is a run of gzip sections, each preceded by a 6-byte header
``[u16 compressed size][u16 raw size][u16 file type]``, followed by an
optional trailer that is carried through untouched.
"""

from __future__ import annotations

import gzip
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path

from goldsaucer.constants import KERNEL_MIN_SECTIONS, KERNEL_SECTION_HEADER
from goldsaucer.errors import FormatError

GZIP_MAGIC = b"\x1f\x8b"


@dataclass
class KernelSection:
    index: int
    file_type: int
    raw_size: int
    compressed: bytes
    data: bytes


@dataclass
class KernelArchive:
    sections: list[KernelSection] = field(default_factory=list)
    trailer: bytes = b""


def parse_kernel(raw: bytes, path: Path) -> KernelArchive:
    """Split KERNEL.BIN into its sections and decompress each one."""
    archive = KernelArchive()
    offset = 0

    while offset + KERNEL_SECTION_HEADER <= len(raw):
        cmp_size, raw_size, file_type = struct.unpack_from("<HHH", raw, offset)
        body_start = offset + KERNEL_SECTION_HEADER
        if cmp_size == 0 or raw[body_start : body_start + 2] != GZIP_MAGIC:
            # Whatever follows the last gzip section is trailer data
            break
        if body_start + cmp_size > len(raw):
            raise FormatError(
                path,
                f"section {len(archive.sections)} is truncated "
                f"({len(raw) - body_start} of {cmp_size} bytes)",
            )

        compressed = raw[body_start : body_start + cmp_size]
        try:
            data = gzip.decompress(compressed)
        except (OSError, EOFError, zlib.error) as e:
            raise FormatError(path, f"section {len(archive.sections)} is not valid gzip: {e}")
        if len(data) != raw_size:
            raise FormatError(
                path,
                f"section {len(archive.sections)} inflates to {len(data)} bytes, "
                f"header says {raw_size}",
            )

        archive.sections.append(KernelSection(
            index=len(archive.sections),
            file_type=file_type,
            raw_size=raw_size,
            compressed=compressed,
            data=data,
        ))
        offset = body_start + cmp_size

    archive.trailer = raw[offset:]
    if len(archive.sections) < KERNEL_MIN_SECTIONS:
        raise FormatError(
            path,
            f"expected at least {KERNEL_MIN_SECTIONS} sections, found {len(archive.sections)}",
        )
    return archive


def compress_section(data: bytes) -> bytes:
    """Deterministic gzip (no timestamp) of one section."""
    return gzip.compress(data, compresslevel=9, mtime=0)


def build_kernel(archive: KernelArchive, replacements: dict[int, bytes], path: Path) -> bytes:
    """Re-emit the archive, recompressing only the sections in ``replacements``."""
    out = bytearray()
    for section in archive.sections:
        data = replacements.get(section.index)
        if data is None or data == section.data:
            compressed, raw_size = section.compressed, section.raw_size
        else:
            if len(data) != section.raw_size:
                raise FormatError(
                    path,
                    f"section {section.index} changed size "
                    f"({section.raw_size} -> {len(data)} bytes)",
                )
            compressed, raw_size = compress_section(data), len(data)
            if len(compressed) > 0xFFFF:
                raise FormatError(path, f"section {section.index} no longer fits a u16 size")
        out += struct.pack("<HHH", len(compressed), raw_size, section.file_type)
        out += compressed
    out += archive.trailer
    return bytes(out)
