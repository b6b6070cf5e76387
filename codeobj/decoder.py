"""Instruction decoding through capstone."""

import re
from dataclasses import dataclass

import capstone as cs

from codeobj.common import ArchitectureError, DecodeError

HEX_TARGET = re.compile(r"^#?(0x[0-9a-fA-F]+)$")


@dataclass(frozen=True)
class Architecture:
    """Decoder settings for one ELF machine type."""
    name: str
    cs_arch: int
    cs_mode: int
    largest_instruction_size: int


ARCHITECTURES = {
    "EM_X86_64": Architecture("x86-64", cs.CS_ARCH_X86, cs.CS_MODE_64, 15),
    "EM_386": Architecture("i386", cs.CS_ARCH_X86, cs.CS_MODE_32, 15),
    "EM_ARM": Architecture("arm", cs.CS_ARCH_ARM, cs.CS_MODE_ARM, 4),
    "EM_AARCH64": Architecture(
        "aarch64", getattr(cs, "CS_ARCH_AARCH64", None) or cs.CS_ARCH_ARM64, cs.CS_MODE_ARM, 4
    ),
}


def architecture_for(machine) -> Architecture:
    """Look up decoder settings for an ELF e_machine value."""
    if machine is None:
        raise ArchitectureError("code object has no architecture information")
    arch = ARCHITECTURES.get(machine)
    if arch is None:
        raise ArchitectureError(f"unsupported architecture {machine}")
    return arch


class CapstoneDecoder:
    """Decode one instruction at a time.

    Direct branch and call targets are passed through the symbolizer, so
    ``call 0x1010`` can read ``call 0x1010 <foo+0>``.
    """

    def __init__(self, arch: Architecture):
        self.arch = arch
        self._cs = cs.Cs(arch.cs_arch, arch.cs_mode)
        self._cs.detail = True

    @classmethod
    def for_code_object(cls, code_object):
        return cls(architecture_for(code_object.machine))

    @property
    def largest_instruction_size(self) -> int:
        return self.arch.largest_instruction_size

    def decode(self, address: int, data: bytes, symbolizer=None):
        """Return (text, size) of the instruction at the start of `data`."""
        insn = next(self._cs.disasm(bytes(data), address, 1), None)
        if insn is None:
            raise DecodeError(f"cannot decode instruction at 0x{address:x}")

        op_str = insn.op_str
        if symbolizer is not None and (insn.group(cs.CS_GRP_JUMP) or insn.group(cs.CS_GRP_CALL)):
            m = HEX_TARGET.match(op_str)
            if m:
                op_str = symbolizer(int(m.group(1), 16))

        text = f"{insn.mnemonic} {op_str}".strip()
        return text, insn.size
