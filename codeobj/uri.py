"""Code object URI parsing and byte fetching.

Locators have the form ``scheme://path[?|#key=value[&key=value...]]`` where
scheme is ``file`` or ``memory``. Recognized keys are ``offset`` and
``size``; both accept ``0x`` hex or decimal numbers. When a key is repeated
the last occurrence wins.
"""

import os
from dataclasses import dataclass, field
from urllib.parse import unquote_to_bytes

from codeobj.common import MemoryAccessError, warn

SCHEME_DELIM = "://"


@dataclass(frozen=True)
class ParsedUri:
    """Components of a code object locator."""
    scheme: str
    path: str
    params: dict[str, str] = field(default_factory=dict)


def percent_decode(path: str) -> bytes:
    """Decode %XX escapes; malformed escapes are kept verbatim."""
    return unquote_to_bytes(path)


def parse_number(text: str) -> int:
    """Parse a 0x-prefixed hex or a decimal number."""
    text = text.strip()
    if text[:2].lower() == "0x":
        value = int(text[2:], 16)
    else:
        value = int(text, 10)
    if value < 0:
        raise ValueError(f"negative value: {text}")
    return value


def parse_uri(locator: str) -> ParsedUri | None:
    """Split a locator into scheme, decoded path and query parameters."""
    scheme_end = locator.find(SCHEME_DELIM)
    if scheme_end < 0:
        return None

    scheme = locator[:scheme_end].lower()
    rest = locator[scheme_end + len(SCHEME_DELIM):]

    cut = min((i for i in (rest.find("#"), rest.find("?")) if i >= 0), default=-1)
    if cut >= 0:
        path, query = rest[:cut], rest[cut + 1:]
    else:
        path, query = rest, None

    params = {}
    if query is not None:
        for token in query.split("&"):
            key, sep, value = token.partition("=")
            if sep:
                params[key] = value

    return ParsedUri(scheme, os.fsdecode(percent_decode(path)), params)


def _read_file(path: str, offset: int, size: int | None) -> bytes | None:
    try:
        f = open(path, "rb")
    except (OSError, ValueError) as e:
        warn(f"could not open `{path}' ({e})")
        return None

    with f:
        try:
            length = f.seek(0, os.SEEK_END)
            if size is None:
                if length < offset:
                    warn(f"invalid uri `{path}' (file size < offset)")
                    return None
                size = length - offset

            f.seek(offset)
            data = f.read(size)
        except (OSError, ValueError, OverflowError, MemoryError) as e:
            warn(f"could not read `{path}' ({e})")
            return None

    if len(data) != size:
        warn(f"short read from `{path}' ({len(data)} of {size} bytes)")
        return None
    return data


def _read_memory(locator: str, memory, offset: int, size: int | None) -> bytes | None:
    if not offset or not size:
        warn(f"invalid uri `{locator}' (offset and size must be != 0)")
        return None

    if memory is None:
        warn(f"no memory reader available for `{locator}'")
        return None

    try:
        return bytes(memory.read(offset, size))
    except MemoryAccessError:
        warn(f"could not read memory at 0x{offset:x}")
    except (OSError, ValueError, OverflowError, MemoryError) as e:
        warn(f"could not read memory at 0x{offset:x} ({e})")
    return None


def resolve(locator: str, memory=None) -> bytes | None:
    """Fetch the bytes a locator points at.

    Args:
        locator: Code object URI.
        memory: Live memory reader used for ``memory://`` locators.

    Returns:
        The bytes, or None when nothing could (or should) be loaded. Problems
        are reported as warnings; this function does not raise.
    """
    uri = parse_uri(locator)
    if uri is None:
        warn(f"invalid uri `{locator}'")
        return None

    try:
        offset = parse_number(uri.params["offset"]) if "offset" in uri.params else 0
        size = None
        if "size" in uri.params:
            size = parse_number(uri.params["size"])
            if not size:
                return None
    except ValueError:
        warn(f"invalid uri `{locator}' (bad offset or size)")
        return None

    if uri.scheme == "file":
        return _read_file(uri.path, offset, size)
    if uri.scheme == "memory":
        return _read_memory(locator, memory, offset, size)

    warn(f'"{uri.scheme}" protocol not supported')
    return None
