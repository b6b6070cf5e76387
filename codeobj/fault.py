"""Memory fault reports with disassembly of the faulting code."""

import sys
import threading

from codeobj.disasm import Disassembler
from codeobj.sources import SourceCache

PAGE_SHIFT = 12

FAULT_REASONS = (
    (0x00000001, "page not present"),
    (0x00000010, "write access to a read-only page"),
    (0x00000100, "execute access to a non-executable page"),
    (0x00001000, "access to host access only"),
    (0x00010000, "uncorrectable ECC failure"),
    (0x00100000, "can't determine the exact fault address"),
)


def describe_fault(node_id: int, virtual_address: int, reason_mask: int) -> str:
    """Format the general fault banner."""
    reasons = "".join(f"{text};" for bit, text in FAULT_REASONS if reason_mask & bit)
    page = virtual_address >> PAGE_SHIFT
    return (
        "\n"
        f"Memory access fault at node: {node_id}\n"
        f"Address: 0x{page:X}xxx ({reasons})\n"
        "\n"
    )


class FaultHandler:
    """Report faults against a set of loaded code objects.

    One lock covers a whole report so concurrent faults do not interleave
    and the code objects are never used from two threads at once.

    Attributes:
        code_objects: Opened CodeObjects of the faulting process.
        memory: Live memory reader for instruction bytes.
        decoder: Shared decoder; by default one is built per code object.
        save_dir: When set, every code object is saved there on a fault.
    """

    def __init__(self, code_objects, memory, decoder=None, sources: SourceCache | None = None, save_dir=None):
        self.code_objects = list(code_objects)
        self.memory = memory
        self.decoder = decoder
        self.sources = sources if sources is not None else SourceCache()
        self.save_dir = save_dir
        self.lock = threading.Lock()

    def find_code_object(self, pc: int):
        """Return the code object whose loaded range holds `pc`."""
        for co in self.code_objects:
            if co.is_open and co.contains(pc):
                return co
        return None

    def handle(self, node_id: int, virtual_address: int, reason_mask: int, pcs=(), out=None):
        """Print the fault report and a listing for each faulting pc."""
        out = out if out is not None else sys.stdout
        with self.lock:
            out.write(describe_fault(node_id, virtual_address, reason_mask))

            for pc in pcs:
                co = self.find_code_object(pc)
                if co is None:
                    print(f"No code object found for pc 0x{pc:x}", file=out)
                    continue
                Disassembler(co, self.memory, self.decoder, self.sources).disassemble(pc, out=out)

            if self.save_dir is not None:
                for co in self.code_objects:
                    if co.is_open:
                        co.save(self.save_dir)
