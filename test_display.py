"""
Tests for the framebuffer display, headless runner and beeper.

pygame runs against SDL's dummy drivers (see conftest.py).
"""

import os
import unittest

import numpy as np

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

from chip8 import WIDTH, HEIGHT
from system import Chip8System
from display import (framebuffer_to_rgb, FramebufferDisplay, HeadlessDisplay,
                     COLOR_ON, COLOR_OFF)
from audio import square_wave, Beeper


def words(*ops: int) -> bytes:
    return b"".join(bytes([(op >> 8) & 0xFF, op & 0xFF]) for op in ops)


# Draw glyph "0" at (0, 0), then spin
DRAW_ZERO = (0x6000, 0xF029, 0xD005, 0x1206)


class TestFramebufferToRgb(unittest.TestCase):
    def test_shape_and_colors(self):
        pixels = bytearray(WIDTH * HEIGHT)
        pixels[1 * WIDTH + 3] = 1       # x=3, y=1
        rgb = framebuffer_to_rgb(pixels)
        self.assertEqual(rgb.shape, (WIDTH, HEIGHT, 3))
        self.assertEqual(rgb.dtype, np.uint8)
        self.assertEqual(tuple(rgb[3, 1]), COLOR_ON)
        self.assertEqual(tuple(rgb[1, 3]), COLOR_OFF)

    def test_custom_palette(self):
        rgb = framebuffer_to_rgb(bytes([1]) * (WIDTH * HEIGHT), on=(1, 2, 3))
        self.assertTrue((rgb == np.array([1, 2, 3], dtype=np.uint8)).all())


class TestHeadlessDisplay(unittest.TestCase):
    def test_run_and_snapshot(self):
        s = Chip8System()
        s.load_binary(words(*DRAW_ZERO))
        disp = HeadlessDisplay(s)
        self.assertEqual(disp.run(4, snapshot_every=2), 4)
        self.assertEqual(len(disp.snapshots), 2)
        self.assertEqual(disp.snapshots[0][:4], b"\x01\x01\x01\x01")

    def test_render_text(self):
        s = Chip8System()
        s.load_binary(words(*DRAW_ZERO))
        disp = HeadlessDisplay(s)
        disp.run(1)
        lines = disp.render_text().splitlines()
        self.assertEqual(len(lines), HEIGHT)
        self.assertTrue(lines[0].startswith("####...."))
        self.assertTrue(lines[1].startswith("#..#...."))

    def test_stops_on_halt(self):
        s = Chip8System(on_error="halt")
        s.load_binary(words(0x5001))
        self.assertEqual(HeadlessDisplay(s).run(10), 1)
        self.assertTrue(s.halted)


class TestFramebufferDisplay(unittest.TestCase):
    def test_window_frames(self):
        s = Chip8System()
        s.load_binary(words(*DRAW_ZERO))
        disp = FramebufferDisplay(s, scale=2)
        self.assertEqual(disp.run(max_frames=3), 3)
        self.assertEqual(s.frame_count, 3)
        self.assertFalse(disp.running)

    def test_key_events(self):
        import pygame

        s = Chip8System()
        disp = FramebufferDisplay(s)
        pygame.init()
        try:
            pygame.display.set_mode((WIDTH, HEIGHT))
            disp._running = True
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_2,
                                                 scancode=0x1F, mod=0, unicode="2"))
            disp._handle_events(pygame)
            self.assertTrue(s.cpu.keys[2])
            pygame.event.post(pygame.event.Event(pygame.KEYUP, key=pygame.K_2,
                                                 scancode=0x1F, mod=0, unicode="2"))
            disp._handle_events(pygame)
            self.assertFalse(s.cpu.keys[2])
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_ESCAPE,
                                                 scancode=0x29, mod=0, unicode=""))
            disp._handle_events(pygame)
            self.assertFalse(disp.running)
        finally:
            pygame.quit()


class TestAudio(unittest.TestCase):
    def test_square_wave(self):
        w = square_wave(441, sample_rate=44100, duration=0.1)
        self.assertEqual(len(w), 4410)
        self.assertEqual(w.dtype, np.int16)
        self.assertEqual(set(np.unique(w).tolist()), {-32767, 32767})
        # 441 Hz at 44100 Hz: 50 samples per half period
        self.assertEqual(w[0], -32767)
        self.assertEqual(w[49], -32767)
        self.assertEqual(w[50], 32767)

    def test_beeper_follows_timer(self):
        b = Beeper()
        if not b.available:
            self.skipTest("no audio mixer")
        try:
            b.update(5)
            self.assertTrue(b.playing)
            b.update(3)
            self.assertTrue(b.playing)
            b.update(0)
            self.assertFalse(b.playing)
        finally:
            b.close()


if __name__ == "__main__":
    unittest.main()
