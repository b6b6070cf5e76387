"""Annotated disassembly listings around an instruction address.

The listing covers a context window around the target pc. The window start
is anchored on a line table row at least CONTEXT_BYTE_SIZE bytes before the
pc; without line information it starts at the pc itself, since instructions
are variable-length and scanning backwards could land mid-instruction. The
window is clamped to the compilation unit holding the pc.
"""

import sys

from codeobj.common import CONTEXT_BYTE_SIZE, DecodeError, MemoryAccessError
from codeobj.dbgsym import DebugIndex
from codeobj.decoder import CapstoneDecoder
from codeobj.sources import SourceCache


class Disassembler:
    """Produce annotated disassembly for one code object.

    Args:
        code_object: Opened CodeObject the pc belongs to.
        memory: Reader used to fetch instruction bytes.
        decoder: Instruction decoder; built from the code object's
            architecture when omitted.
        sources: Source text cache, shared between listings if given.
    """

    def __init__(self, code_object, memory, decoder=None, sources: SourceCache | None = None):
        self.code_object = code_object
        self.memory = memory
        self.decoder = decoder
        self.sources = sources if sources is not None else SourceCache()

    def _debug_index(self) -> DebugIndex:
        self.code_object.load_debug_info()
        return self.code_object.debug_index or DebugIndex.empty()

    def window(self, pc: int):
        """Return the [start, end) address range listed for `pc`."""
        index = self._debug_index()
        lines = index.lines

        i = lines.floor_index(pc)
        if i is not None:
            while pc - lines.key_at(i) < CONTEXT_BYTE_SIZE and i > 0:
                i -= 1
            start = lines.key_at(i)
        else:
            start = pc

        end = pc + CONTEXT_BYTE_SIZE

        cu = index.cu_ranges.floor(pc)
        if cu is not None:
            low, high = cu
            if pc < high:
                start = max(start, low)
                end = min(end, high)

        return start, end

    def symbolize(self, address: int) -> str:
        """Render an address for operands: ``0x<addr> <name+off>``."""
        text = f"0x{address:x}"
        symbol = self.code_object.find_symbol(address)
        if symbol:
            text += f" <{symbol.name}+{address - symbol.value}>"
        return text

    def _print_source(self, index, loc, prev_file, prev_line, out):
        if loc.file != prev_file or loc.line != prev_line:
            print(file=out)
        if loc.file != prev_file:
            print(f"{loc.file}:", file=out)
        if loc.line == prev_line:
            return

        first = loc.line
        if loc.file == prev_file and loc.line > prev_line:
            # Back up over lines that have no code of their own.
            mapped = index.lines_in(loc.file)
            first -= 1
            while first > prev_line and first not in mapped:
                first -= 1
            first += 1

        text = self.sources.lines(loc.file)
        for n in range(first, loc.line + 1):
            if text is None:
                print(f"{n:<8}{loc.file}: No such file or directory.", file=out)
            elif n <= len(text):
                print(f"{n:<8}{text[n - 1]}", file=out)
            else:
                print(f"{n:<8}", file=out)

    def disassemble(self, pc: int, largest_instruction_size: int | None = None, out=None):
        """Write the annotated listing for `pc` to `out` (stdout by default).

        Raises:
            ArchitectureError: No decoder was given and the code object's
                architecture is unknown.
        """
        out = out if out is not None else sys.stdout
        co = self.code_object

        decoder = self.decoder
        if decoder is None:
            decoder = self.decoder = CapstoneDecoder.for_code_object(co)
        if largest_instruction_size is None:
            largest_instruction_size = decoder.largest_instruction_size

        index = self._debug_index()
        start, end = self.window(pc)
        symbol = co.find_symbol(pc)

        print(file=out)
        header = "Disassembly"
        if symbol:
            header += f" for function {symbol.name}"
        print(f"{header}:", file=out)
        print(f"    code object: {co.uri}", file=out)
        print(f"    loaded at: [0x{co.load_address:x}-0x{co.load_address + co.loaded_size:x}]", file=out)

        prev_file = None
        prev_line = 0
        addr = start
        while addr < end:
            loc = index.lines.get(addr)
            if loc is not None:
                self._print_source(index, loc, prev_file, prev_line, out)
                prev_file, prev_line = loc.file, loc.line

            try:
                data = self.memory.read(addr, largest_instruction_size)
            except MemoryAccessError:
                print(f"Cannot access memory at address 0x{addr:x}", file=out)
                break

            try:
                text, size = decoder.decode(addr, data, self.symbolize)
            except DecodeError:
                print(f"Cannot disassemble instruction at address 0x{addr:x}", file=out)
                break

            line = (" => " if addr == pc else "    ") + f"0x{addr:x}"
            if symbol:
                if addr >= symbol.value:
                    line += f" <+{addr - symbol.value}>"
                else:
                    line += f" <-{symbol.value - addr}>"
            print(f"{line}:    {text}", file=out)

            addr += size

        print(file=out)
        print("End of disassembly.", file=out)
