"""Shared constants for the randomizer.

Single source of truth for binary layout sizes, inventory id ranges and the
fixed balance curves. Game knowledge that is data rather than layout (key
item flags, zones, boss names) lives in data/reference.json and is read via
the loader module.
"""

# --- Runs ---

# Every sub-seed derived for a category gets this many attempts by default
DEFAULT_MAX_ATTEMPTS = 100

OUTPUT_PREFIX = "GoldSaucer_"


# --- Input locations (relative to the install's data directory) ---

KERNEL_CANDIDATES = (
    "kernel/KERNEL.BIN",
    "lang-en/kernel/KERNEL.BIN",
    "data/lang-en/kernel/KERNEL.BIN",
    "data/kernel/KERNEL.BIN",
)
SCENE_CANDIDATES = (
    "battle/scene.bin",
    "lang-en/battle/scene.bin",
    "data/lang-en/battle/scene.bin",
    "data/battle/scene.bin",
)
FLEVEL_CANDIDATES = (
    "field/flevel.lgp",
    "data/field/flevel.lgp",
)
EXE_CANDIDATES = (
    "ff7_en.exe",
    "ff7.exe",
    "data/ff7_en.exe",
    "data/ff7.exe",
)


# --- KERNEL.BIN ---

KERNEL_SECTION_HEADER = 6
KERNEL_INIT_SECTION = 3
KERNEL_ITEM_SECTION = 4
KERNEL_WEAPON_SECTION = 5
KERNEL_ARMOR_SECTION = 6
KERNEL_ACCESSORY_SECTION = 7
KERNEL_MATERIA_SECTION = 8
KERNEL_MIN_SECTIONS = 9

CHARACTER_COUNT = 9
MATERIA_STOCK_OFFSET = 0x728
MATERIA_STOCK_COUNT = 200
EMPTY_MATERIA = 0xFF


# --- scene.bin ---

SCENE_BLOCK_SIZE = 0x2000
SCENE_POINTERS = 16
SCENE_POINTER_TABLE = SCENE_POINTERS * 4
SCENE_SIZE = 0x1E80
SCENE_SIZE_OLD = 0x1C50
SCENE_ENEMY_OFFSET = 0x298
SCENE_ENEMY_COUNT = 3
SCENE_NO_POINTER = 0xFFFFFFFF

# Opening battles are never touched so the tutorial fights stay vanilla
EARLY_SAFE_SCENES = 8

BOSS_HP_THRESHOLD = 10_000
BOSS_LEVEL_THRESHOLD = 45


# --- flevel.lgp / field scripts ---

LGP_HEADER_SIZE = 16
LGP_TOC_ENTRY_SIZE = 27
LGP_FILE_HEADER_SIZE = 24
FIELD_SECTION_COUNT = 9

OP_STITM = 0x58
OP_SMTRA = 0x5B
OP_BITON = 0x82

MAX_PICKUP_QUANTITY = 99
FIELD_MATERIA_LIMIT = 0x80


# --- Inventory ids (the u16 space used by drops, steals, morphs and STITM) ---

ITEM_BASE = 0x000
WEAPON_BASE = 0x080
ARMOR_BASE = 0x100
ACCESSORY_BASE = 0x120
INVENTORY_END = 0x140
NO_ITEM = 0xFFFF

# Consumables above this id never appear as field pickups
FIELD_ITEM_MAX = 0x68

STEAL_FLAG = 0x80


# --- Executable tables ---

SHOP_COUNT = 80
SHOP_SLOTS = 10
SHOP_ENTRY_ITEM = 0
SHOP_ENTRY_MATERIA = 1
ITEM_PRICE_COUNT = 320
MATERIA_PRICE_COUNT = 96


# --- Balance curves (keyed by difficulty tier 0-4) ---

# Enemy tier upper bounds on level: <10, <20, <30, <45, rest
TIER_LEVEL_BOUNDS = (10, 20, 30, 45)
TIER_CURVE = (1.0, 1.8, 3.0, 4.5, 7.0)

# Donor weight by |donor tier - enemy tier|
DONOR_TIER_WEIGHTS = (8, 3, 1, 0, 0)
# Drop/steal weight by |item tier - enemy tier|
REWARD_TIER_WEIGHTS = (8, 4, 2, 1, 1)

# Item value tier upper bounds on price
PRICE_TIER_BOUNDS = (100, 500, 2000, 8000)
# Materia tier upper bounds on the first AP threshold (x100 AP)
MATERIA_AP_TIER_BOUNDS = (10, 20, 40, 80)

ITEM_TIER_PRICES = (50, 300, 1500, 6000, 20000)
MATERIA_TIER_PRICES = (500, 2000, 8000, 20000, 50000)

# HP caps by scene index, interpolated within each span
EARLY_END_SCENE = 64
MID_END_SCENE = 160
EARLY_HP_CAP = (200, 800)
MID_HP_CAP = (800, 5000)
