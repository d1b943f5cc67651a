"""LGP archive codec (flevel.lgp).

Header: 12-byte creator, u32 file count, then one 27-byte TOC entry per file
(20-byte name, u32 offset, u8 check code, u16 conflict index). The lookup
and conflict tables between the TOC and the first file are kept as opaque
bytes. Each file is stored as ``[20-byte name][u32 size][body]``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path

from goldsaucer.constants import LGP_FILE_HEADER_SIZE, LGP_HEADER_SIZE, LGP_TOC_ENTRY_SIZE
from goldsaucer.errors import FormatError


@dataclass
class LgpEntry:
    toc_index: int
    name: str
    offset: int
    size: int

    @property
    def body_start(self) -> int:
        return self.offset + LGP_FILE_HEADER_SIZE

    @property
    def end(self) -> int:
        return self.body_start + self.size


@dataclass
class LgpArchive:
    creator: bytes
    entries: list[LgpEntry] = field(default_factory=list)

    def by_name(self) -> dict[str, LgpEntry]:
        return {e.name: e for e in self.entries}

    def body(self, raw: bytes, entry: LgpEntry) -> bytes:
        return raw[entry.body_start : entry.end]


def _decode_name(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace").strip().lower()


def parse_lgp(raw: bytes, path: Path) -> LgpArchive:
    """Read the TOC and validate every file header it points at."""
    if len(raw) < LGP_HEADER_SIZE:
        raise FormatError(path, "file is too small to hold an LGP header")

    creator = raw[:12]
    (count,) = struct.unpack_from("<I", raw, 12)
    toc_end = LGP_HEADER_SIZE + count * LGP_TOC_ENTRY_SIZE
    if toc_end > len(raw):
        raise FormatError(path, f"TOC for {count} files extends past end of file")

    archive = LgpArchive(creator=creator)
    for i in range(count):
        pos = LGP_HEADER_SIZE + i * LGP_TOC_ENTRY_SIZE
        name = _decode_name(raw[pos : pos + 20])
        (offset,) = struct.unpack_from("<I", raw, pos + 20)
        if offset < toc_end or offset + LGP_FILE_HEADER_SIZE > len(raw):
            raise FormatError(path, f"entry {name!r} points outside the archive")
        (size,) = struct.unpack_from("<I", raw, offset + 20)
        entry = LgpEntry(toc_index=i, name=name, offset=offset, size=size)
        if entry.end > len(raw):
            raise FormatError(
                path, f"entry {name!r} is truncated ({len(raw) - entry.body_start} of {size} bytes)"
            )
        archive.entries.append(entry)

    return archive


def build_lgp(
    archive: LgpArchive, raw: bytes, replacements: dict[str, bytes], path: Path
) -> bytes:
    """Re-emit the archive with the bodies in ``replacements`` swapped in.

    Files keep their on-disk order; only the TOC offsets and the per-file
    size words change.
    """
    entries = archive.by_name()
    unknown = set(replacements) - set(entries)
    if unknown:
        raise FormatError(path, f"cannot replace files missing from the archive: {sorted(unknown)}")
    changed = {
        name: body
        for name, body in replacements.items()
        if body != archive.body(raw, entries[name])
    }
    if not changed or not archive.entries:
        return raw

    ordered = sorted(archive.entries, key=lambda e: e.offset)
    data_start = ordered[0].offset
    data_end = max(e.end for e in archive.entries)

    out = bytearray(raw[:data_start])
    new_offsets: dict[int, int] = {}
    for entry in ordered:
        body = changed.get(entry.name, archive.body(raw, entry))
        new_offsets[entry.toc_index] = len(out)
        out += raw[entry.offset : entry.offset + 20]
        out += struct.pack("<I", len(body))
        out += body
    out += raw[data_end:]

    for toc_index, offset in new_offsets.items():
        struct.pack_into("<I", out, LGP_HEADER_SIZE + toc_index * LGP_TOC_ENTRY_SIZE + 20, offset)
    return bytes(out)
