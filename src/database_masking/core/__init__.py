"""Core scanning and masking components."""
