"""Live-process collaborators backed by Frida.

FridaProcess loads a small agent into an attached process and exposes it as
a memory reader and as a load-address provider keyed by module name.
"""

from urllib.parse import quote

import frida

from codeobj.common import MemoryAccessError

AGENT_JS = r"""
'use strict';

rpc.exports = {
  read(address, size) {
    return ptr(address).readByteArray(size);
  },
  modules() {
    return Process.enumerateModules().map(m => ({
      name: m.name,
      base: m.base.toString(),
      size: m.size,
      path: m.path,
    }));
  }
};
"""


def get_device(device, remote):
    """Resolve a Frida device handle from CLI arguments.

    Args:
        device: Device selector ("local", "usb", or "remote").
        remote: Remote host string used when device == "remote".
    """
    if device == "local":
        return frida.get_local_device()
    if device == "usb":
        return frida.get_usb_device(timeout=5)
    if device == "remote":
        return frida.get_device_manager().add_remote_device(remote)
    raise ValueError("Invalid device type")


def file_uri(path: str) -> str:
    """Build a file:// locator for a module path."""
    return "file://" + quote(path, safe="/")


class FridaProcess:
    """Memory reader and module provider for an attached process."""

    def __init__(self, session):
        self.session = session
        self.script = session.create_script(AGENT_JS)
        self.script.load()
        self._modules = None

    def read(self, address: int, size: int) -> bytes:
        try:
            data = self.script.exports_sync.read(hex(address), size)
        except frida.core.RPCException:
            raise MemoryAccessError(address, size)
        if data is None:
            raise MemoryAccessError(address, size)
        return bytes(data)

    def modules(self) -> dict[str, dict]:
        """Modules of the process by name, as reported by the agent."""
        if self._modules is None:
            mods = self.script.exports_sync.modules()
            self._modules = {m["name"]: m for m in mods}
        return self._modules

    def load_address(self, name: str) -> int | None:
        mod = self.modules().get(name)
        if mod is None:
            return None
        return int(mod["base"], 16)

    def uri(self, name: str) -> str | None:
        mod = self.modules().get(name)
        if mod is None or not mod.get("path"):
            return None
        return file_uri(mod["path"])

    def close(self):
        """Unload the agent and detach."""
        self.script.unload()
        self.session.detach()
