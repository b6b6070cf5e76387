"""Code object materialization, lazy indexing and persistence."""

import os
import re
import shutil
import struct
import tempfile

from elftools.common.exceptions import DWARFError, ELFError
from elftools.construct.core import ConstructError
from elftools.elf.elffile import ELFFile

from codeobj.addrmap import AddressMap
from codeobj.common import Segment, warn
from codeobj.dbgsym import DebugIndex, build_debug_index, build_symbol_index, lookup_symbol
from codeobj.uri import resolve

UNSAFE_NAME_CHARS = re.compile(r"[:/#?&=]")

# pyelftools reports corrupt input through more than ELFError: header fields
# flow unchecked into seek(), read(), struct and arithmetic.
PARSE_ERRORS = (
    ELFError, DWARFError, ConstructError, struct.error,
    OSError, ValueError, OverflowError, MemoryError,
    AssertionError, AttributeError, TypeError, KeyError, IndexError,
    ZeroDivisionError,
)


def safe_filename(uri: str) -> str:
    """Turn a locator into a flat file name."""
    return UNSAFE_NAME_CHARS.sub("_", uri)


class CodeObject:
    """One loaded binary image.

    The fetched bytes live in an anonymous temporary file owned exclusively by
    this instance. Symbol and debug indices are built on first use and then
    published in one assignment, so a reader never sees a partial index.

    A CodeObject is not safe for concurrent use; callers sharing one across
    threads must serialize access.
    """

    def __init__(self, load_address: int, uri: str, memory=None):
        self.load_address = load_address
        self.uri = uri
        self.memory = memory
        self.loaded_size = 0
        self.segments: list[Segment] = []
        self.machine = None

        self._store = None
        self._symbols = None
        self._debug = None

    @classmethod
    def from_provider(cls, provider, code_object_id, memory=None):
        """Build a CodeObject from a load-address provider.

        The provider answers ``load_address(id)`` and ``uri(id)``, returning
        None when the information is unavailable; the object is then inert.
        """
        load_address = provider.load_address(code_object_id)
        if load_address is None:
            warn("could not get the code object's load address")
            return cls(0, "", memory)

        uri = provider.uri(code_object_id)
        if uri is None:
            warn("could not get the code object's URI")
            return cls(load_address, "", memory)

        return cls(load_address, uri, memory)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def is_open(self) -> bool:
        return self._store is not None

    def close(self):
        """Release the backing store."""
        if self._store is not None:
            self._store.close()
            self._store = None

    def move(self):
        """Transfer ownership of the backing store to a new CodeObject.

        The source is left without a store, indices or size.
        """
        other = CodeObject(self.load_address, self.uri, self.memory)
        other.loaded_size = self.loaded_size
        other.segments = self.segments
        other.machine = self.machine
        other._store, self._store = self._store, None
        other._symbols, self._symbols = self._symbols, None
        other._debug, self._debug = self._debug, None
        self.loaded_size = 0
        self.segments = []
        return other

    def contains(self, address: int) -> bool:
        """True when `address` lies in the loaded image."""
        return self.load_address <= address < self.load_address + self.loaded_size

    def open(self) -> bool:
        """Fetch and materialize the code object's bytes.

        Returns:
            True on success. On failure a warning has been printed and the
            object stays unusable.
        """
        if self.is_open:
            return True

        buffer = resolve(self.uri, self.memory)
        if buffer is None:
            return False

        try:
            store = tempfile.TemporaryFile()
        except OSError:
            warn("could not create a temporary file for code object")
            return False

        try:
            if store.write(buffer) != len(buffer):
                warn("could not write to the temporary file")
                store.close()
                return False
            store.flush()
            store.seek(0)
        except OSError:
            warn("could not write to the temporary file")
            store.close()
            return False

        try:
            elf = ELFFile(store)
            if not elf["e_phoff"] or not elf.num_segments():
                warn(f"no program header table in `{self.uri}'")
                store.close()
                return False

            segments = []
            loaded_size = 0
            for seg in elf.iter_segments():
                h = seg.header
                if h.p_type != "PT_LOAD":
                    continue
                segments.append(Segment(int(h.p_vaddr), int(h.p_memsz), int(h.p_offset), int(h.p_filesz)))
                loaded_size = max(loaded_size, int(h.p_vaddr) + int(h.p_memsz))
            machine = elf["e_machine"]
        except PARSE_ERRORS as e:
            warn(f"could not parse `{self.uri}': {e}")
            store.close()
            return False

        store.seek(0)
        self.segments = segments
        self.loaded_size = loaded_size
        self.machine = machine
        self._store = store
        return True

    def _elf(self) -> ELFFile:
        return ELFFile(self._store)

    def load_symbols(self):
        """Build the symbol index once; later calls are no-ops."""
        if self._symbols is not None or not self.is_open:
            return
        try:
            index = build_symbol_index(self._elf(), self.load_address)
        except PARSE_ERRORS as e:
            warn(f"could not read symbols of `{self.uri}': {e}")
            index = AddressMap()
        self._symbols = index

    def load_debug_info(self):
        """Build the line table and CU ranges once; later calls are no-ops."""
        if self._debug is not None or not self.is_open:
            return
        try:
            index = build_debug_index(self._elf(), self.load_address)
        except PARSE_ERRORS as e:
            warn(f"could not read debug info of `{self.uri}': {e}")
            index = DebugIndex.empty()
        self._debug = index

    @property
    def symbol_index(self):
        return self._symbols

    @property
    def debug_index(self):
        return self._debug

    def find_symbol(self, address: int):
        """Return the function symbol containing `address`, or None."""
        self.load_symbols()
        if self._symbols is None:
            return None
        return lookup_symbol(self._symbols, address)

    def read(self, offset: int, size: int) -> bytes:
        """Read raw bytes from the backing store."""
        if not self.is_open:
            return b""
        self._store.seek(offset)
        return self._store.read(size)

    def save(self, directory) -> bool:
        """Copy the materialized image to `directory`/<safe uri>."""
        if not self.is_open:
            warn("code object is not opened")
            return False

        path = os.path.join(os.fspath(directory), safe_filename(self.uri))
        try:
            size = self._store.seek(0, os.SEEK_END)
            self._store.seek(0)
            with open(path, "wb") as f:
                shutil.copyfileobj(self._store, f)
                written = f.tell()
        except OSError as e:
            warn(f"could not save `{self.uri}' to {path}: {e}")
            return False
        return written == size
