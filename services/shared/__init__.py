"""Errors, request structs and incremental helpers shared by the core."""
