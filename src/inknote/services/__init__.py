"""Service layer for inknote."""
