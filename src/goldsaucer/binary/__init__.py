"""Codecs for the game's binary containers and record tables."""
