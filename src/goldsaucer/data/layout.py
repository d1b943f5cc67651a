"""Layout metadata captured during extraction and consumed by the compiler."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from goldsaucer.binary.exe import ExeProfile
from goldsaucer.binary.kernel import KernelArchive
from goldsaucer.binary.lgp import LgpArchive
from goldsaucer.binary.scene import SceneArchive


@dataclass
class SourceFile:
    """An input file: where it sits relative to the input root and its bytes."""

    relative: Path
    raw: bytes


@dataclass
class FieldFile:
    name: str
    toc_index: int
    data: bytes


@dataclass
class LayoutMetadata:
    root: Path
    kernel_file: SourceFile
    kernel: KernelArchive
    scene_file: SourceFile
    scene: SceneArchive
    # (scene index, byte offset inside the decompressed scene) per enemy
    enemy_offsets: list[tuple[int, int]] = field(default_factory=list)
    lgp_file: SourceFile | None = None
    lgp: LgpArchive | None = None
    fields: dict[str, FieldFile] = field(default_factory=dict)
    exe_file: SourceFile | None = None
    exe_profile: ExeProfile | None = None

    def sources(self) -> list[SourceFile]:
        files = [self.kernel_file, self.scene_file]
        if self.lgp_file is not None:
            files.append(self.lgp_file)
        if self.exe_file is not None:
            files.append(self.exe_file)
        return files

    def summary(self) -> dict[str, dict[str, object]]:
        """Sizes and counts per file, for display."""
        out: dict[str, dict[str, object]] = {
            str(self.kernel_file.relative): {
                "bytes": len(self.kernel_file.raw),
                "sections": len(self.kernel.sections),
                "trailer": len(self.kernel.trailer),
            },
            str(self.scene_file.relative): {
                "bytes": len(self.scene_file.raw),
                "blocks": self.scene.block_count,
                "scenes": len(self.scene.scenes),
            },
        }
        if self.lgp_file is not None and self.lgp is not None:
            out[str(self.lgp_file.relative)] = {
                "bytes": len(self.lgp_file.raw),
                "files": len(self.lgp.entries),
                "field_scripts": len(self.fields),
            }
        if self.exe_file is not None and self.exe_profile is not None:
            out[str(self.exe_file.relative)] = {
                "bytes": len(self.exe_file.raw),
                "shop_table": hex(self.exe_profile.shop_table),
            }
        return out
