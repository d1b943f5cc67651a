"""Balance scaling and invariant checks."""
