"""CLI entrypoint for codeobj.

Materializes a code object from its URI and prints an annotated disassembly
listing, reports a memory fault, saves the image, or lists the modules of a
live process. Without
--pid, instruction bytes are read from the image itself.
"""

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from yaspin import yaspin

from codeobj.codeobject import CodeObject
from codeobj.common import ArchitectureError
from codeobj.disasm import Disassembler
from codeobj.fault import FaultHandler
from codeobj.frida_target import FridaProcess, get_device
from codeobj.memory import ImageMemory
from codeobj.uri import parse_number


@dataclass(frozen=True)
class ToolConf:
    """Configuration bundle for one CLI invocation.

    Attributes:
        uri: Code object locator.
        load_address: Address the image is mapped at.
        process: Attached FridaProcess, or None for static use.
        out: Output directory for saved images.
    """
    uri: str
    load_address: int
    process: Optional[Any]
    out: Optional[Path]


def parse_args(argv=None) -> argparse.Namespace:
    """Define and parse CLI arguments."""
    p = argparse.ArgumentParser(
        description="Code object symbolization and disassembly"
    )
    sub = p.add_subparsers(dest="command", required=True)

    def add_target(sp):
        sp.add_argument(
            "--pid",
            type=int,
            help="Attach to this process and read live memory",
        )
        sp.add_argument(
            "--device",
            default="local",
            choices=["local", "usb", "remote"],
            help="Frida device selection. Default: %(default)s",
        )
        sp.add_argument(
            "--remote-host",
            default="127.0.0.1:27042",
            help='Remote Frida server address for --device remote (e.g. "192.168.1.10:27042")',
        )

    d = sub.add_parser("disasm", help="Disassemble around an address")
    d.add_argument("uri", help="Code object URI, e.g. file:///path/lib.so or memory://host#offset=0x..&size=..")
    d.add_argument("address", help="Instruction address (0x hex or decimal)")
    d.add_argument(
        "--load-address",
        default="0",
        help="Address the code object is loaded at. Default: %(default)s",
    )
    add_target(d)

    s = sub.add_parser("save", help="Save the materialized code object")
    s.add_argument("uri", help="Code object URI")
    s.add_argument("out", help="Output directory")
    add_target(s)

    f = sub.add_parser("fault", help="Report a memory fault against a code object")
    f.add_argument("uri", help="Code object URI")
    f.add_argument("address", help="Faulting virtual address (0x hex or decimal)")
    f.add_argument(
        "--pc",
        action="append",
        default=[],
        help="Program counter of a faulting wave; may be repeated",
    )
    f.add_argument("--node", type=int, default=0, help="Faulting node id. Default: %(default)s")
    f.add_argument("--reason", default="0", help="Fault reason mask. Default: %(default)s")
    f.add_argument(
        "--load-address",
        default="0",
        help="Address the code object is loaded at. Default: %(default)s",
    )
    f.add_argument("--save-dir", help="Save the code object here as well")
    add_target(f)

    m = sub.add_parser("modules", help="List code objects of a live process")
    add_target(m)

    return p.parse_args(argv)


def attach(args):
    """Attach to --pid when given."""
    if args.pid is None:
        return None
    device = get_device(args.device, args.remote_host)
    return FridaProcess(device.attach(args.pid))


def open_code_object(conf: ToolConf) -> CodeObject | None:
    co = CodeObject(conf.load_address, conf.uri, conf.process)
    with yaspin(text="[~] loading code object", color="cyan"):
        if not co.open():
            return None
        co.load_symbols()
        co.load_debug_info()
    return co


def cmd_disasm(args, process) -> int:
    try:
        pc = parse_number(args.address)
        load_address = parse_number(args.load_address)
    except ValueError:
        print("[!] invalid address")
        return 1

    conf = ToolConf(args.uri, load_address, process, None)
    co = open_code_object(conf)
    if co is None:
        print(f"[!] could not load {conf.uri}")
        return 1

    with co:
        memory = process if process is not None else ImageMemory(co)
        try:
            Disassembler(co, memory).disassemble(pc)
        except ArchitectureError as e:
            print(f"[!] {e}")
            return 1
    return 0


def cmd_save(args, process) -> int:
    out = Path(args.out)
    out.mkdir(exist_ok=True, parents=True)

    conf = ToolConf(args.uri, 0, process, out)
    co = open_code_object(conf)
    if co is None:
        print(f"[!] could not load {conf.uri}")
        return 1

    with co:
        if not co.save(conf.out):
            print(f"[!] could not save {conf.uri}")
            return 1
    print(f"[+] saved {conf.uri} to {conf.out}")
    return 0


def cmd_fault(args, process) -> int:
    try:
        address = parse_number(args.address)
        reason = parse_number(args.reason)
        load_address = parse_number(args.load_address)
        pcs = [parse_number(pc) for pc in args.pc]
    except ValueError:
        print("[!] invalid address")
        return 1

    save_dir = None
    if args.save_dir:
        save_dir = Path(args.save_dir)
        save_dir.mkdir(exist_ok=True, parents=True)

    conf = ToolConf(args.uri, load_address, process, save_dir)
    co = open_code_object(conf)
    if co is None:
        print(f"[!] could not load {conf.uri}")
        return 1

    with co:
        memory = process if process is not None else ImageMemory(co)
        handler = FaultHandler([co], memory, save_dir=conf.out)
        try:
            handler.handle(args.node, address, reason, pcs)
        except ArchitectureError as e:
            print(f"[!] {e}")
            return 1
    return 0


def cmd_modules(args, process) -> int:
    if process is None:
        print("[!] modules requires --pid")
        return 1

    for name, mod in sorted(process.modules().items(), key=lambda kv: int(kv[1]["base"], 16)):
        base = int(mod["base"], 16)
        print(f"0x{base:x}-0x{base + mod['size']:x}  {name}  {process.uri(name)}")
    return 0


COMMANDS = {
    "disasm": cmd_disasm,
    "save": cmd_save,
    "modules": cmd_modules,
    "fault": cmd_fault,
}


def main(argv=None):
    args = parse_args(argv)
    process = attach(args)
    try:
        return COMMANDS[args.command](args, process)
    finally:
        if process is not None:
            process.close()


if __name__ == "__main__":
    raise SystemExit(main())
