"""
CHIP-8 Keypad Mapping
=====================
Translates host keyboard scancodes into the sixteen logical CHIP-8 keys.

Scancodes are the SDL values pygame reports as ``event.scancode``, so the
table works regardless of keyboard layout.  A KeyMap is immutable: build
it once at startup and hand the same instance to whoever reads input.

Default layout:

    CHIP-8 key   Host keys
    0-9          digit row, keypad 0-9
    2 4 6 8      also DOWN, LEFT, RIGHT, UP
    A-F          letters A-F
"""

from __future__ import annotations
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from chip8 import NUM_KEYS

# SDL scancodes
SC_A, SC_B, SC_C, SC_D, SC_E, SC_F = 0x04, 0x05, 0x06, 0x07, 0x08, 0x09
SC_1, SC_0 = 0x1E, 0x27            # digit row runs 1..9 then 0
SC_RIGHT, SC_LEFT, SC_DOWN, SC_UP = 0x4F, 0x50, 0x51, 0x52
SC_KP_1, SC_KP_0 = 0x59, 0x62      # keypad runs 1..9 then 0

DEFAULT_SCANCODES: dict[int, int] = {
    SC_0: 0x0, SC_KP_0: 0x0,
    SC_DOWN: 0x2, SC_LEFT: 0x4, SC_RIGHT: 0x6, SC_UP: 0x8,
    SC_A: 0xA, SC_B: 0xB, SC_C: 0xC, SC_D: 0xD, SC_E: 0xE, SC_F: 0xF,
}
for _k in range(1, 10):
    DEFAULT_SCANCODES[SC_1 + _k - 1] = _k
    DEFAULT_SCANCODES[SC_KP_1 + _k - 1] = _k
del _k


class KeyMap:
    """Read-only scancode -> key index lookup."""

    def __init__(self, table: Optional[Mapping[int, int]] = None):
        table = DEFAULT_SCANCODES if table is None else table
        for code, key in table.items():
            if not 0 <= key < NUM_KEYS:
                raise ValueError(f"scancode {code:#x} maps to invalid key {key}")
        self._table = MappingProxyType(dict(table))

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[int, int]]) -> "KeyMap":
        return cls(dict(pairs))

    def lookup(self, scancode: int) -> Optional[int]:
        return self._table.get(scancode)

    def apply(self, keys: list[bool], scancode: int, pressed: bool) -> bool:
        """Set or clear the key for *scancode* in *keys*.

        Returns False if the scancode is not mapped.
        """
        key = self._table.get(scancode)
        if key is None:
            return False
        keys[key] = pressed
        return True

    def scancodes_for(self, key: int) -> list[int]:
        return sorted(c for c, k in self._table.items() if k == key)

    def __contains__(self, scancode: int) -> bool:
        return scancode in self._table

    def __len__(self) -> int:
        return len(self._table)


DEFAULT_KEYMAP = KeyMap()
