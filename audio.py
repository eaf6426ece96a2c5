"""
CHIP-8 Beeper
=============
Plays a square-wave tone through pygame.mixer while the sound timer is
nonzero.  The tone buffer is generated once with numpy and looped, so
update() only starts or stops playback.
"""

from __future__ import annotations
import sys

import numpy as np

SAMPLE_RATE = 44100


def square_wave(tone_hz: int, sample_rate: int = SAMPLE_RATE,
                duration: float = 0.1, amplitude: float = 1.0) -> np.ndarray:
    """One buffer of a 50% duty-cycle square wave as int16 samples."""
    t = np.arange(int(sample_rate * duration))
    wave = ((t * tone_hz * 2 // sample_rate) % 2).astype(np.float32) * 2 - 1
    return (wave * amplitude * 32767).astype(np.int16)


class Beeper:
    """Start/stop a looping tone following the sound timer."""

    def __init__(self, tone_hz: int = 440, volume: float = 0.2):
        self.tone_hz = tone_hz
        self.volume = volume
        self.playing = False
        self._sound = None
        self._init_mixer()

    def _init_mixer(self):
        import pygame

        try:
            pygame.mixer.pre_init(SAMPLE_RATE, -16, 1, 256)
            pygame.mixer.init()
            freq, _, channels = pygame.mixer.get_init()
            samples = square_wave(self.tone_hz, sample_rate=freq)
            if channels > 1:
                samples = np.repeat(samples[:, None], channels, axis=1)
            self._sound = pygame.sndarray.make_sound(np.ascontiguousarray(samples))
            self._sound.set_volume(self.volume)
        except pygame.error as e:
            print(f"[audio] mixer unavailable, running silent: {e}",
                  file=sys.stderr)
            self._sound = None

    @property
    def available(self) -> bool:
        return self._sound is not None

    def update(self, sound_timer: int):
        if self._sound is None:
            return
        if sound_timer > 0 and not self.playing:
            self._sound.play(loops=-1)
            self.playing = True
        elif sound_timer == 0 and self.playing:
            self._sound.stop()
            self.playing = False

    def close(self):
        import pygame

        if self._sound is not None:
            self._sound.stop()
            self._sound = None
            pygame.mixer.quit()
        self.playing = False
