"""Code object symbolization and annotated disassembly."""

from codeobj.codeobject import CodeObject
from codeobj.common import (
    ArchitectureError,
    CodeObjectError,
    DecodeError,
    MemoryAccessError,
    Segment,
    SourceLine,
    Symbol,
)
from codeobj.dbgsym import DebugIndex
from codeobj.disasm import Disassembler
from codeobj.fault import FaultHandler, describe_fault
from codeobj.memory import ImageMemory
from codeobj.sources import SourceCache
from codeobj.uri import resolve
