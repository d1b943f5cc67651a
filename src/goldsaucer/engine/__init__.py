"""Seeded randomization stages and the pipeline that orders them."""
