"""Source text cache used to annotate disassembly listings."""


class SourceCache:
    """Per-engine cache of source file lines.

    Unreadable files are remembered as None so they are only tried once.
    """

    def __init__(self):
        self._files: dict[str, list[str] | None] = {}

    def lines(self, path: str) -> list[str] | None:
        """Return the lines of `path` without line terminators, or None."""
        if path in self._files:
            return self._files[path]

        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                lines = [line.rstrip("\r\n") for line in f]
        except OSError:
            lines = None

        self._files[path] = lines
        return lines
