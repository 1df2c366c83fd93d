from __future__ import annotations


class IndexHealth:
    """Process-wide availability of the search index.

    Set exactly once by the startup probe and only read afterwards. A failed
    call later in the process lifetime never flips it back, so reads and
    writes do not flap between the index and the relational fallback.
    """

    def __init__(self) -> None:
        self._available = False
        self._probed = False

    @property
    def available(self) -> bool:
        return self._available

    @property
    def probed(self) -> bool:
        return self._probed

    def record_probe(self, available: bool) -> None:
        if self._probed:
            raise RuntimeError("index availability has already been recorded")
        self._available = bool(available)
        self._probed = True

    def __repr__(self) -> str:
        return f"IndexHealth(available={self._available}, probed={self._probed})"
