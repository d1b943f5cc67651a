"""End-to-end run: extract, randomize, scale, compile, promote."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from goldsaucer.config import RandomizerConfig, Settings, get_settings
from goldsaucer.constants import OUTPUT_PREFIX
from goldsaucer.core.compiler import PatchCompiler
from goldsaucer.core.spoiler import SPOILER_NAME, build_spoiler, render
from goldsaucer.data.entities import EntitySet
from goldsaucer.data.extractor import extract
from goldsaucer.data.layout import LayoutMetadata
from goldsaucer.engine.pipeline import RandomizeResult, RandomizerPipeline
from goldsaucer.engine.seeds import normalize_seed
from goldsaucer.errors import FileIOError, FormatError

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """What a finished run produced."""

    output: Path
    result: RandomizeResult
    files: list[Path]
    changed: list[Path]


@dataclass
class VerifyReport:
    """Outcome of pushing an install through extract and compile unchanged."""

    counts: dict[str, int]
    identical: dict[Path, bool]

    @property
    def ok(self) -> bool:
        return all(self.identical.values())


def output_name(seed: str | int) -> str:
    """Directory name for a seed's output, safe on every filesystem."""
    text = normalize_seed(seed)
    safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in text)
    return f"{OUTPUT_PREFIX}{safe}"


class RandomizerGenerator:
    """Orchestrates a full randomizer run."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def load(self, input_dir: Path, config: RandomizerConfig) -> tuple[EntitySet, LayoutMetadata]:
        entities, layout = extract(
            input_dir,
            fields=config.needs_fields,
            exe=True,
            require_exe=config.needs_exe,
            exe_overrides=self.settings.exe_overrides(),
        )
        if config.key_items and layout.lgp is None:
            raise FormatError(
                input_dir / "field" / "flevel.lgp",
                "key item randomization needs the field archive",
            )
        return entities, layout

    def generate(
        self,
        input_dir: Path,
        seed: str | int,
        config: RandomizerConfig,
        output_dir: Path | None = None,
        progress_callback: Callable[..., None] | None = None,
    ) -> RunReport:
        """Randomize the install in ``input_dir`` and write the patched tree.

        Args:
            input_dir: Directory holding the original data files
            seed: Master seed; fully determines the output
            config: Which categories to randomize
            output_dir: Parent directory for ``GoldSaucer_<seed>`` (default from settings)
            progress_callback: Called as ``(step, status)`` around each phase

        Returns:
            RunReport describing the promoted output
        """

        def _notify(step: str, status: str, **kwargs):
            if progress_callback:
                progress_callback(step, status, **kwargs)

        output_dir = output_dir or self.settings.output_dir

        _notify("extract", "started")
        original, layout = self.load(input_dir, config)
        _notify("extract", "completed", counts=original.counts())

        _notify("randomize", "started")
        pipeline = RandomizerPipeline(
            config, max_attempts=self.settings.max_attempts, workers=self.settings.workers
        )
        result = pipeline.randomize(original, seed)
        _notify("randomize", "completed", stages=sorted(result.stages))

        _notify("compile", "started")
        files = PatchCompiler(layout, original).compile(result.entities)
        changed = sorted(
            src.relative for src in layout.sources() if files[src.relative] != src.raw
        )
        if self.settings.spoiler_log:
            files[Path(SPOILER_NAME)] = render(build_spoiler(result, list(files)))
        output = PatchCompiler.write(files, output_dir, output_name(result.seed))
        _notify("compile", "completed", output=str(output))

        logger.info("Seed %s: %d files written, %d changed", result.seed, len(files), len(changed))
        return RunReport(output=output, result=result, files=sorted(files), changed=changed)

    def verify(self, input_dir: Path) -> VerifyReport:
        """Extract and recompile without changes; every file must come back identical."""
        original, layout = extract(
            input_dir, fields=True, exe=True, exe_overrides=self.settings.exe_overrides()
        )
        files = PatchCompiler(layout, original).compile(original)
        identical = {src.relative: files[src.relative] == src.raw for src in layout.sources()}
        for path, same in identical.items():
            if not same:
                logger.warning("%s did not survive an unchanged round trip", path)
        return VerifyReport(counts=original.counts(), identical=identical)


def read_config(path: Path | None) -> RandomizerConfig:
    """Load a RandomizerConfig file, or the all-off default."""
    if path is None:
        return RandomizerConfig()
    try:
        return RandomizerConfig.from_file(path)
    except OSError as e:
        raise FileIOError(path, "read", e) from e
