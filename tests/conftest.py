"""Shared fixtures: synthetic ELF images and fake collaborators."""

import struct

import pytest

from codeobj.common import DecodeError, MemoryAccessError

PT_LOAD = 1
PT_PHDR = 6
PT_GNU_STACK = 0x6474E551
STT_OBJECT = 1
STT_FUNC = 2
EM_X86_64 = 62

SHT_PROGBITS = 1
SHT_SYMTAB = 2
SHT_STRTAB = 3


def _align(n, a):
    return (n + a - 1) & ~(a - 1)


def build_elf(segments=(), symbols=(), text=b"", text_addr=0, machine=EM_X86_64, sections=None):
    """Build a little-endian ELF64 shared object.

    Args:
        segments: (p_type, vaddr, memsz) tuples; None leaves out the program
            header table. A PT_LOAD at text_addr maps the text bytes.
        symbols: (name, value, size[, st_type[, st_shndx]]) tuples.
        text: Contents of .text.
        text_addr: Virtual address of .text.
        sections: Extra name -> bytes PROGBITS sections, e.g. DWARF.
    """
    segments = list(segments) if segments is not None else []
    phnum = len(segments)
    phoff = 64 if phnum else 0

    strtab = bytearray(b"\0")
    symtab = bytearray(24)
    for name, value, size, *rest in symbols:
        st_type = rest[0] if rest else STT_FUNC
        shndx = rest[1] if len(rest) > 1 else 1
        symtab += struct.pack("<IBBHQQ", len(strtab), (1 << 4) | st_type, 0, shndx, value, size)
        strtab += name.encode() + b"\0"

    # name, type, flags, addr, data, link, info, align, entsize
    bodies = [
        (".text", SHT_PROGBITS, 6, text_addr, bytes(text), 0, 0, 16, 0),
        (".symtab", SHT_SYMTAB, 0, 0, bytes(symtab), 3, 1, 8, 24),
        (".strtab", SHT_STRTAB, 0, 0, bytes(strtab), 0, 0, 1, 0),
    ]
    for name, data in (sections or {}).items():
        bodies.append((name, SHT_PROGBITS, 0, 0, bytes(data), 0, 0, 1, 0))

    shstrtab = bytearray(b"\0")
    name_offsets = []
    for name in [b[0] for b in bodies] + [".shstrtab"]:
        name_offsets.append(len(shstrtab))
        shstrtab += name.encode() + b"\0"
    bodies.append((".shstrtab", SHT_STRTAB, 0, 0, bytes(shstrtab), 0, 0, 1, 0))

    pos = 64 + 56 * phnum
    offsets = []
    for _, _, _, _, data, _, _, align, _ in bodies:
        pos = _align(pos, max(align, 8))
        offsets.append(pos)
        pos += len(data)
    shoff = _align(pos, 8)
    shnum = len(bodies) + 1
    text_off = offsets[0]

    image = bytearray(shoff + 64 * shnum)
    image[0:16] = b"\x7fELF" + bytes([2, 1, 1, 0]) + bytes(8)
    image[16:64] = struct.pack(
        "<HHIQQQIHHHHHH",
        3, machine, 1, 0, phoff, shoff, 0, 64, 56, phnum, 64, shnum, shnum - 1,
    )

    for i, (p_type, vaddr, memsz) in enumerate(segments):
        offset, filesz = 0, 0
        if p_type == PT_LOAD and vaddr == text_addr:
            offset, filesz = text_off, min(len(text), memsz)
        off = 64 + 56 * i
        image[off:off + 56] = struct.pack("<IIQQQQQQ", p_type, 5, offset, vaddr, vaddr, filesz, memsz, 0x1000)

    for i, (body, offset, name_off) in enumerate(zip(bodies, offsets, name_offsets), 1):
        _, sh_type, flags, addr, data, link, info, align, entsize = body
        image[offset:offset + len(data)] = data
        off = shoff + 64 * i
        image[off:off + 64] = struct.pack(
            "<IIQQQQIIQQ", name_off, sh_type, flags, addr, offset, len(data), link, info, align, entsize,
        )

    return bytes(image)


def build_dwarf():
    """One DWARF 4 compilation unit with a small line program.

    The unit covers [0x1000, 0x1010) with comp_dir /src. Rows:
        0x1000 a.c:10, 0x1004 a.c:12, 0x1008 inc/b.h:5 then inc/b.h:6,
        end of sequence at 0x1010.
    """
    abbrev = bytes([
        1, 0x11, 0,          # abbrev 1: DW_TAG_compile_unit, no children
        0x03, 0x08,          # DW_AT_name, DW_FORM_string
        0x1B, 0x08,          # DW_AT_comp_dir, DW_FORM_string
        0x11, 0x01,          # DW_AT_low_pc, DW_FORM_addr
        0x12, 0x06,          # DW_AT_high_pc, DW_FORM_data4
        0x10, 0x17,          # DW_AT_stmt_list, DW_FORM_sec_offset
        0, 0,
        0,
    ])

    die = bytes([1]) + b"a.c\0" + b"/src\0" + struct.pack("<QII", 0x1000, 0x10, 0)
    unit = struct.pack("<HIB", 4, 0, 8) + die
    info = struct.pack("<I", len(unit)) + unit

    header_rest = (
        bytes([1, 1, 1, (-5) & 0xFF, 14, 13])
        + bytes([0, 1, 1, 1, 1, 0, 0, 0, 1, 0, 0, 1])
        + b"inc\0" + b"\0"
        + b"a.c\0" + bytes([0, 0, 0])
        + b"b.h\0" + bytes([1, 0, 0])
        + b"\0"
    )
    program = (
        bytes([0x00, 9, 0x02]) + struct.pack("<Q", 0x1000)
        + bytes([0x03, 9, 0x01])            # line 10
        + bytes([0x02, 4, 0x03, 2, 0x01])   # 0x1004, line 12
        + bytes([0x04, 2])                  # file b.h
        + bytes([0x02, 4, 0x03, 0x79, 0x01])  # 0x1008, line 5
        + bytes([0x03, 1, 0x01])            # 0x1008, line 6
        + bytes([0x02, 8, 0x00, 1, 0x01])   # end_sequence at 0x1010
    )
    body = struct.pack("<H", 4) + struct.pack("<I", len(header_rest)) + header_rest + program
    line = struct.pack("<I", len(body)) + body

    return {".debug_abbrev": abbrev, ".debug_info": info, ".debug_line": line}


class FakeMemory:
    """Memory reader over a dict of address -> bytes regions."""

    def __init__(self, regions=None):
        self.regions = dict(regions or {})
        self.reads = []

    def read(self, address, size):
        self.reads.append((address, size))
        for base, data in self.regions.items():
            if base <= address < base + len(data):
                rel = address - base
                return data[rel:rel + size]
        raise MemoryAccessError(address, size)


class FixedDecoder:
    """Decoder treating every `width` bytes as one instruction."""

    largest_instruction_size = 4

    def __init__(self, width=4, bad=()):
        self.width = width
        self.bad = set(bad)

    def decode(self, address, data, symbolizer=None):
        if address in self.bad:
            raise DecodeError(f"bad instruction at 0x{address:x}")
        text = f"insn {symbolizer(address)}" if symbolizer else "insn"
        return text, self.width


@pytest.fixture
def make_elf():
    return build_elf


@pytest.fixture
def dwarf_sections():
    return build_dwarf()


@pytest.fixture
def write_image(tmp_path):
    """Write bytes to a file and return its file:// URI."""
    def write(data, name="image.so"):
        path = tmp_path / name
        path.write_bytes(data)
        return f"file://{path}"
    return write


@pytest.fixture
def fake_memory():
    return FakeMemory


@pytest.fixture
def fixed_decoder():
    return FixedDecoder
