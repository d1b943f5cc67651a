"""GoldSaucer - seeded content randomizer for Final Fantasy VII (PC)."""

__version__ = "0.3.0"
