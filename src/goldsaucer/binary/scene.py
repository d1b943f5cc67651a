"""scene.bin archive codec.

scene.bin is a sequence of 0x2000-byte blocks. Each block opens with a
table of 16 u32 pointers (byte offset >> 2, 0xFFFFFFFF for unused) followed
by gzip-compressed scenes padded with 0xFF to a 4-byte boundary.

The game locates scenes through a lookup table keyed by block, so a
rebuild keeps every scene in its original block whenever the recompressed
data still fits, and only falls back to greedy packing when it does not.
"""

from __future__ import annotations

import gzip
import logging
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path

from goldsaucer.constants import (
    SCENE_BLOCK_SIZE,
    SCENE_NO_POINTER,
    SCENE_POINTER_TABLE,
    SCENE_POINTERS,
    SCENE_SIZE,
    SCENE_SIZE_OLD,
)
from goldsaucer.errors import FormatError

logger = logging.getLogger(__name__)

PAD = 0xFF
BLOCK_CAPACITY = SCENE_BLOCK_SIZE - SCENE_POINTER_TABLE


@dataclass
class Scene:
    index: int
    block: int
    compressed: bytes
    data: bytes

    @property
    def is_current_format(self) -> bool:
        return len(self.data) == SCENE_SIZE


@dataclass
class SceneArchive:
    scenes: list[Scene] = field(default_factory=list)
    block_count: int = 0
    tail: bytes = b""

    def blocks(self) -> list[list[Scene]]:
        grouped: list[list[Scene]] = [[] for _ in range(self.block_count)]
        for scene in self.scenes:
            grouped[scene.block].append(scene)
        return grouped


def _strip_padding(data: bytes) -> bytes:
    end = len(data)
    while end and data[end - 1] == PAD:
        end -= 1
    return data[:end]


def _pad4(data: bytes) -> bytes:
    return data + bytes([PAD]) * (-len(data) % 4)


def parse_scene(raw: bytes, path: Path) -> SceneArchive:
    """Split scene.bin into scenes, remembering which block held each one."""
    archive = SceneArchive()
    offset = 0

    while offset + SCENE_BLOCK_SIZE <= len(raw):
        block = raw[offset : offset + SCENE_BLOCK_SIZE]
        block_index = archive.block_count

        starts = []
        for (pointer,) in struct.iter_unpack("<I", block[:SCENE_POINTER_TABLE]):
            if pointer == SCENE_NO_POINTER:
                break
            starts.append(pointer << 2)

        bounds = starts + [SCENE_BLOCK_SIZE]
        for i, start in enumerate(starts):
            end = bounds[i + 1]
            if start < SCENE_POINTER_TABLE or end < start or end > SCENE_BLOCK_SIZE:
                raise FormatError(path, f"block {block_index} has invalid scene offsets")

            compressed = _strip_padding(block[start:end])
            try:
                data = gzip.decompress(compressed)
            except (OSError, EOFError, zlib.error) as e:
                raise FormatError(
                    path, f"scene {len(archive.scenes)} in block {block_index} is not gzip: {e}"
                )
            if len(data) not in (SCENE_SIZE, SCENE_SIZE_OLD):
                raise FormatError(
                    path, f"scene {len(archive.scenes)} has unexpected length {len(data)}"
                )
            archive.scenes.append(Scene(
                index=len(archive.scenes),
                block=block_index,
                compressed=compressed,
                data=data,
            ))

        archive.block_count += 1
        offset += SCENE_BLOCK_SIZE

    if archive.block_count == 0:
        raise FormatError(path, f"file is smaller than one {SCENE_BLOCK_SIZE:#x}-byte block")
    archive.tail = raw[offset:]
    return archive


def _emit_block(payloads: list[bytes]) -> bytes:
    pointers = []
    body = bytearray()
    for payload in payloads:
        pointers.append((SCENE_POINTER_TABLE + len(body)) >> 2)
        body += payload
    pointers += [SCENE_NO_POINTER] * (SCENE_POINTERS - len(pointers))
    body += bytes([PAD]) * (BLOCK_CAPACITY - len(body))
    return struct.pack(f"<{SCENE_POINTERS}I", *pointers) + bytes(body)


def _greedy_blocks(payloads: list[bytes], path: Path) -> list[list[bytes]]:
    blocks: list[list[bytes]] = [[]]
    used = 0
    for payload in payloads:
        if len(payload) > BLOCK_CAPACITY:
            raise FormatError(path, "a compressed scene does not fit into an empty block")
        if used + len(payload) > BLOCK_CAPACITY or len(blocks[-1]) == SCENE_POINTERS:
            blocks.append([])
            used = 0
        blocks[-1].append(payload)
        used += len(payload)
    return blocks


def build_scene(
    archive: SceneArchive, raw: bytes, replacements: dict[int, bytes], path: Path
) -> bytes:
    """Re-emit scene.bin with the scenes in ``replacements`` recompressed.

    Blocks without a changed scene are copied verbatim from ``raw``.
    """
    changed = {
        i: data for i, data in replacements.items() if data != archive.scenes[i].data
    }
    if not changed:
        return raw

    payloads: dict[int, bytes] = {}
    for scene in archive.scenes:
        if scene.index in changed:
            if len(changed[scene.index]) != len(scene.data):
                raise FormatError(path, f"scene {scene.index} changed size")
            payloads[scene.index] = _pad4(gzip.compress(changed[scene.index], 9, mtime=0))
        else:
            payloads[scene.index] = _pad4(scene.compressed)

    grouped = archive.blocks()
    fits = all(
        sum(len(payloads[s.index]) for s in scenes) <= BLOCK_CAPACITY for scenes in grouped
    )

    out = bytearray()
    if fits:
        for block_index, scenes in enumerate(grouped):
            if any(s.index in changed for s in scenes):
                out += _emit_block([payloads[s.index] for s in scenes])
            else:
                start = block_index * SCENE_BLOCK_SIZE
                out += raw[start : start + SCENE_BLOCK_SIZE]
    else:
        logger.warning(
            "Recompressed scenes overflow their original blocks; repacking %s greedily", path.name
        )
        packed = _greedy_blocks([payloads[s.index] for s in archive.scenes], path)
        packed += [[] for _ in range(archive.block_count - len(packed))]
        for block in packed:
            out += _emit_block(block)

    out += archive.tail
    return bytes(out)
