"""
Pytest configuration for the CHIP-8 test suite.

Forces SDL's dummy video and audio drivers before anything imports pygame,
so display and audio code can be exercised on machines without a screen
or sound card:

    python -m pytest
"""

import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "pygame: tests that open pygame (dummy SDL drivers)")
