"""ELF/DWARF symbol and line indexing for code objects."""

import posixpath
import subprocess
from dataclasses import dataclass
from functools import lru_cache

from elftools.elf.constants import SHN_INDICES
from elftools.elf.elffile import ELFFile

from codeobj.addrmap import AddressMap
from codeobj.common import SourceLine, Symbol, warn

SYMBOL_SECTION_TYPES = ("SHT_SYMTAB", "SHT_DYNSYM")
DEMANGLERS = ("llvm-cxxfilt", "c++filt")

# DW_AT_high_pc with a constant form is an offset from DW_AT_low_pc.
CONSTANT_FORMS = (
    "DW_FORM_data1", "DW_FORM_data2", "DW_FORM_data4", "DW_FORM_data8",
    "DW_FORM_udata", "DW_FORM_sdata", "DW_FORM_implicit_const",
)


@dataclass(frozen=True)
class DebugIndex:
    """Line table and compilation unit ranges of one code object.

    Attributes:
        lines: address -> SourceLine.
        cu_ranges: low_pc -> high_pc for every unit exposing both bounds.
    """
    lines: AddressMap
    cu_ranges: AddressMap

    @classmethod
    def empty(cls):
        return cls(AddressMap(), AddressMap())

    def lines_in(self, file: str) -> set[int]:
        """Line numbers of `file` that own at least one address."""
        return {loc.line for loc in self.lines.values() if loc.file == file}


@lru_cache(maxsize=None)
def demangle(name: str) -> str:
    """Demangle an Itanium C++ name; return it unchanged on failure."""
    if not name.startswith("_Z"):
        return name
    for tool in DEMANGLERS:
        try:
            proc = subprocess.run(
                [tool, name],
                capture_output=True, text=True, timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired):
            continue
        if proc.returncode == 0 and proc.stdout.strip():
            return proc.stdout.strip()
    return name


def _iter_symbol_sections(elf: ELFFile):
    """Yield every symbol table section of the ELF."""
    for sec in elf.iter_sections():
        if sec["sh_type"] in SYMBOL_SECTION_TYPES:
            yield sec


def build_symbol_index(elf: ELFFile, load_address: int) -> AddressMap:
    """Index defined function symbols by their loaded address.

    When two symbols start at the same address the one covering the larger
    range is kept; on equal sizes the first one seen stays.
    """
    items = {}

    for sec in _iter_symbol_sections(elf):
        for sym in sec.iter_symbols():
            if sym["st_info"]["type"] != "STT_FUNC":
                continue
            if sym["st_shndx"] in (SHN_INDICES.SHN_UNDEF, "SHN_UNDEF"):
                continue

            start = load_address + int(sym["st_value"])
            size = int(sym["st_size"])
            prev = items.get(start)
            if prev is None or size > prev[1]:
                items[start] = (sym.name, size)

    return AddressMap.from_items(items)


def lookup_symbol(index: AddressMap, address: int) -> Symbol | None:
    """Return the symbol whose [value, value + size) range holds `address`."""
    found = index.floor(address)
    if found is None:
        return None
    value, (name, size) = found
    if address >= value + size:
        return None
    return Symbol(demangle(name), value, size)


def _attr_str(die, name):
    attr = die.attributes.get(name)
    if attr is None:
        return None
    raw = attr.value
    return raw.decode("utf-8", "replace") if isinstance(raw, bytes) else str(raw)


def _address_attr(cu, attr) -> int:
    if attr.form.startswith("DW_FORM_addrx"):
        return int(cu.dwarfinfo.get_addr(cu, attr.value))
    return int(attr.value)


def _cu_pc_range(cu):
    """Return (low_pc, high_pc) of a unit, or None if either is missing."""
    top = cu.get_top_DIE()
    low_attr = top.attributes.get("DW_AT_low_pc")
    high_attr = top.attributes.get("DW_AT_high_pc")
    if low_attr is None or high_attr is None:
        return None

    low = _address_attr(cu, low_attr)
    if high_attr.form in CONSTANT_FORMS:
        high = low + int(high_attr.value)
    else:
        high = _address_attr(cu, high_attr)
    return low, high


def _file_resolver(lp, comp_dir):
    """Build a file-index -> path function for one line program."""
    version = lp.header["version"]
    include_dirs = [
        d.decode("utf-8", "replace") if isinstance(d, bytes) else str(d)
        for d in lp.header.get("include_directory", [])
    ]
    file_entries = lp.header.get("file_entry", [])

    def directory(dir_idx: int):
        if version >= 5:
            if dir_idx < len(include_dirs):
                return include_dirs[dir_idx]
            return comp_dir
        # DWARF < 5: 0 is the compilation directory.
        if dir_idx == 0 or dir_idx > len(include_dirs):
            return comp_dir
        return include_dirs[dir_idx - 1]

    def file_name(file_idx: int):
        idx = file_idx if version >= 5 else file_idx - 1
        if idx < 0 or idx >= len(file_entries):
            return "??"
        fe = file_entries[idx]
        name = fe.name.decode("utf-8", "replace") if isinstance(fe.name, bytes) else str(fe.name)
        base = directory(int(getattr(fe, "dir_index", 0)))
        if base and not posixpath.isabs(name):
            if comp_dir and not posixpath.isabs(base):
                base = posixpath.join(comp_dir, base)
            return posixpath.join(base, name)
        return name

    return file_name


def _index_cu(dwarf, cu, load_address, lines, cu_ranges):
    pc_range = _cu_pc_range(cu)
    if pc_range is not None:
        low, high = pc_range
        cu_ranges.setdefault(load_address + low, load_address + high)

    lp = dwarf.line_program_for_CU(cu)
    if lp is None:
        return

    file_name = _file_resolver(lp, _attr_str(cu.get_top_DIE(), "DW_AT_comp_dir"))
    for entry in lp.get_entries():
        state = entry.state
        if state is None or state.end_sequence:
            continue
        address = int(state.address or 0)
        line = int(state.line or 0)
        if not address or not line:
            continue
        lines[load_address + address] = SourceLine(file_name(int(state.file)), line)


def build_debug_index(elf: ELFFile, load_address: int) -> DebugIndex:
    """Index DWARF line rows and compilation unit pc ranges.

    Units that fail to decode are skipped, so the result may be partial or
    empty; that only means less source context is available. When two units
    start at the same address the first one keeps its range.
    """
    if elf.get_section_by_name(".debug_info") is None:
        return DebugIndex.empty()

    lines = {}
    cu_ranges = {}
    try:
        dwarf = elf.get_dwarf_info()
        for cu in dwarf.iter_CUs():
            try:
                _index_cu(dwarf, cu, load_address, lines, cu_ranges)
            except Exception:
                continue
    except Exception as e:
        warn(f"debug info is incomplete: {e}")

    return DebugIndex(AddressMap.from_items(lines), AddressMap.from_items(cu_ranges))
