"""Compilation, spoiler log and end-to-end orchestration."""
