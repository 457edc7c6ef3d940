"""Read, write, append to, delete from and extract ZIP archives, one entry at a time."""

__version__ = "0.3.0"
__all__ = ["archive", "delete", "errors", "extract", "format", "paths"]