"""Memory readers backed by a materialized code object.

A memory reader is any object with ``read(address, size) -> bytes`` raising
MemoryAccessError for unreadable addresses. Live processes are served by
``codeobj.frida_target.FridaProcess``; ImageMemory serves a code object that
is only available as a file.
"""

from codeobj.common import MemoryAccessError


class ImageMemory:
    """Read a code object's image as if it were mapped at its load address.

    Reads never cross a segment end and may therefore return fewer bytes
    than requested. The part of a segment beyond its file size reads as
    zeros.
    """

    def __init__(self, code_object):
        self.code_object = code_object

    def read(self, address: int, size: int) -> bytes:
        co = self.code_object
        vaddr = address - co.load_address
        for seg in co.segments:
            if not seg.vaddr <= vaddr < seg.vaddr + seg.memsz:
                continue
            rel = vaddr - seg.vaddr
            size = min(size, seg.memsz - rel)
            data = b""
            if rel < seg.filesz:
                data = co.read(seg.offset + rel, min(size, seg.filesz - rel))
            return data + bytes(size - len(data))
        raise MemoryAccessError(address, size)
