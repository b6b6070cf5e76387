"""Shared value objects, errors and diagnostics for codeobj."""

import sys
from dataclasses import dataclass

CONTEXT_BYTE_SIZE = 32


def warn(msg: str) -> None:
    """Print a non-fatal diagnostic."""
    print(f"[!] {msg}", file=sys.stderr, flush=True)


class CodeObjectError(Exception):
    """Base class for codeobj errors."""


class MemoryAccessError(CodeObjectError):
    """Raised by memory readers when an address range cannot be read."""

    def __init__(self, address: int, size: int = 0):
        super().__init__(f"cannot access memory at address 0x{address:x}")
        self.address = address
        self.size = size


class DecodeError(CodeObjectError):
    """Raised by decoders when the bytes do not form an instruction."""


class ArchitectureError(CodeObjectError):
    """Architecture metadata is missing or unsupported."""


@dataclass(frozen=True)
class Symbol:
    """Function symbol covering [value, value + size)."""
    name: str
    value: int
    size: int


@dataclass(frozen=True)
class SourceLine:
    """Source location from a DWARF line table row."""
    file: str
    line: int


@dataclass(frozen=True)
class Segment:
    """Loadable segment of a code object.

    Attributes:
        vaddr: Unbiased segment virtual address.
        memsz: Size of the segment in memory.
        offset: File offset of the segment's file-backed bytes.
        filesz: Number of file-backed bytes.
    """
    vaddr: int
    memsz: int
    offset: int
    filesz: int
