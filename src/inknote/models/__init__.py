"""Data models for inknote."""
