"""Configuration and environment loading."""

import json
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from goldsaucer.constants import DEFAULT_MAX_ATTEMPTS

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paths
    input_dir: Path | None = Field(default=None, alias="GOLDSAUCER_INPUT_DIR")
    output_dir: Path = Field(default=Path("./output"), alias="GOLDSAUCER_OUTPUT_DIR")

    # Engine
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, alias="GOLDSAUCER_MAX_ATTEMPTS", ge=1)
    workers: int = Field(default=4, alias="GOLDSAUCER_WORKERS", ge=1)
    spoiler_log: bool = Field(default=True, alias="GOLDSAUCER_SPOILER_LOG")
    log_level: str = Field(default="WARNING", alias="GOLDSAUCER_LOG_LEVEL")

    # Executable table offsets, for releases the bundled profiles do not cover
    exe_shop_offset: int | None = Field(default=None, alias="GOLDSAUCER_EXE_SHOP_OFFSET")
    exe_item_price_offset: int | None = Field(default=None, alias="GOLDSAUCER_EXE_ITEM_PRICE_OFFSET")
    exe_materia_price_offset: int | None = Field(
        default=None, alias="GOLDSAUCER_EXE_MATERIA_PRICE_OFFSET"
    )

    model_config = {"env_file": ".env", "extra": "ignore", "populate_by_name": True}

    def exe_overrides(self) -> dict[str, int]:
        """Offsets set in the environment, keyed like the reference profiles."""
        overrides = {
            "shop_table": self.exe_shop_offset,
            "item_prices": self.exe_item_price_offset,
            "materia_prices": self.exe_materia_price_offset,
        }
        return {k: v for k, v in overrides.items() if v is not None}


class RandomizerConfig(BaseModel):
    """Which categories a run randomizes. All off means the output equals the input."""

    enemy: bool = False
    items: bool = False
    materia: bool = False
    key_items: bool = Field(default=False, alias="keyItems")
    shops: bool = False
    stat_scaling: bool = Field(default=False, alias="statScaling")
    full_logic_key_items: bool = Field(default=False, alias="fullLogicKeyItems")
    allow_duplicate_drops: bool = Field(default=False, alias="allowDuplicateDrops")
    loose_shop_categories: bool = Field(default=False, alias="looseShopCategories")

    model_config = {"populate_by_name": True, "extra": "forbid", "frozen": True}

    @classmethod
    def from_file(cls, path: Path) -> "RandomizerConfig":
        """Load a config from a JSON file using the camelCase keys."""
        return cls.model_validate(json.loads(path.read_text()))

    @property
    def needs_fields(self) -> bool:
        return self.items or self.materia or self.key_items

    @property
    def needs_exe(self) -> bool:
        return self.shops

    def enabled(self) -> list[str]:
        """Names of the enabled toggles, in their camelCase spelling."""
        dumped = self.model_dump(by_alias=True)
        return [name for name, value in dumped.items() if value]


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get application settings singleton."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
