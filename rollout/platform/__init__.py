"""Platform layer: processes and files."""

from .files import atomic_write_text, erase_file, write_private_bytes
from .process import ProcessError, run

__all__ = [
    "ProcessError",
    "atomic_write_text",
    "erase_file",
    "run",
    "write_private_bytes",
]
