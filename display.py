"""
CHIP-8 Framebuffer Display
==========================
Renders the 64x32 framebuffer of a Chip8System in a pygame window and
feeds host key events into the machine's key array.

The window loop is also the run loop: each pass polls events, runs one
frame of instructions (system.run_frame), redraws, updates the beeper and
sleeps to the timer rate.  Everything happens on the calling thread, so
key writes never overlap a step().

Usage (programmatic):
    from display import FramebufferDisplay
    disp = FramebufferDisplay(system, scale=20)
    disp.run()          # returns when the window closes or the CPU halts

Usage (CLI):
    python cli.py game.ch8 --scale 20
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Optional

import numpy as np

from chip8 import WIDTH, HEIGHT
from keypad import KeyMap, DEFAULT_KEYMAP

if TYPE_CHECKING:
    from system import Chip8System
    from audio import Beeper

# Green on black
COLOR_ON  = (0, 255, 0)
COLOR_OFF = (0, 0, 0)

DEFAULT_SCALE = 20


def framebuffer_to_rgb(pixels: bytes | bytearray,
                       on: tuple[int, int, int] = COLOR_ON,
                       off: tuple[int, int, int] = COLOR_OFF,
                       width: int = WIDTH, height: int = HEIGHT) -> np.ndarray:
    """Convert row-major 0/1 pixels to a (width, height, 3) uint8 array.

    The column-major shape is what pygame.surfarray expects.
    """
    lut = np.array([off, on], dtype=np.uint8)
    grid = np.frombuffer(bytes(pixels), dtype=np.uint8).reshape(height, width)
    return lut[grid].transpose(1, 0, 2)


class FramebufferDisplay:
    """pygame window for the CHIP-8 framebuffer."""

    def __init__(self, sys_emu: "Chip8System", keymap: KeyMap = DEFAULT_KEYMAP,
                 scale: int = DEFAULT_SCALE, title: str = "chip-8 emulator",
                 beeper: Optional["Beeper"] = None):
        self.sys = sys_emu
        self.keymap = keymap
        self.scale = max(1, scale)
        self.title = title
        self.beeper = beeper
        self._running = False

    # -- public API -------------------------------------------------------

    def run(self, max_frames: Optional[int] = None) -> int:
        """Open the window and drive the system until quit/halt.

        Returns the number of frames shown.
        """
        import pygame

        pygame.init()
        pygame.display.set_caption(self.title)
        screen = pygame.display.set_mode((WIDTH * self.scale, HEIGHT * self.scale))
        fb_surface = pygame.Surface((WIDTH, HEIGHT))
        clock = pygame.time.Clock()

        frames = 0
        self._running = True
        try:
            while self._running:
                self._handle_events(pygame)
                if not self._running:
                    break

                self.sys.run_frame()
                self._render(pygame, screen, fb_surface)
                if self.beeper is not None:
                    self.beeper.update(self.sys.cpu.sound_timer)

                frames += 1
                if self.sys.halted:
                    print(f"[display] CPU halted: {self.sys.last_error}",
                          file=sys.stderr)
                    break
                if max_frames is not None and frames >= max_frames:
                    break
                clock.tick(self.sys.timer_hz)
        finally:
            self._running = False
            if self.beeper is not None:
                self.beeper.update(0)
            pygame.quit()
        return frames

    def stop(self):
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- internals --------------------------------------------------------

    def _handle_events(self, pygame):
        keys = self.sys.cpu.keys
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self._running = False
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    self._running = False
                else:
                    self.keymap.apply(keys, event.scancode, True)
            elif event.type == pygame.KEYUP:
                self.keymap.apply(keys, event.scancode, False)

    def _render(self, pygame, screen, fb_surface):
        rgb = framebuffer_to_rgb(self.sys.cpu.fb.pixels)
        pygame.surfarray.blit_array(fb_surface, rgb)
        scaled = pygame.transform.scale(fb_surface, screen.get_size())
        screen.blit(scaled, (0, 0))
        pygame.display.flip()


class HeadlessDisplay:
    """No-window display.  Runs frames and records framebuffer snapshots."""

    def __init__(self, sys_emu: "Chip8System"):
        self.sys = sys_emu
        self.snapshots: list[bytes] = []

    def snapshot(self) -> bytes:
        data = self.sys.cpu.fb.to_bytes()
        self.snapshots.append(data)
        return data

    def run(self, max_frames: int, snapshot_every: int = 0) -> int:
        """Run up to *max_frames* frames.  Returns frames completed."""
        frames = 0
        while frames < max_frames and not self.sys.halted:
            self.sys.run_frame()
            frames += 1
            if snapshot_every and frames % snapshot_every == 0:
                self.snapshot()
            if self.sys.at_breakpoint:
                break
        return frames

    def render_text(self, on: str = "#", off: str = ".") -> str:
        """ASCII picture of the framebuffer, one line per row."""
        return "\n".join("".join(on if p else off for p in row)
                         for row in self.sys.cpu.fb.rows())
