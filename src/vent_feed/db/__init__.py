"""Database helpers for the embedded backend."""
