"""
CHIP-8 System Driver
====================
Wraps a Machine (chip8.py) with the policy the core deliberately leaves to
its caller:

  - pacing: how many instructions run per 60 Hz timer tick
  - error policy: what to do when step() raises an ExecError
  - breakpoints and a remembered program image for resets

The driver is single-threaded.  Input code writes ``system.cpu.keys``
between frames, never while a frame is running.
"""

from __future__ import annotations
import random
from typing import Optional

from chip8 import Machine, ExecError, PROGRAM_START

# ---------------------------------------------------------------------------
#  Pacing defaults
# ---------------------------------------------------------------------------

TIMER_HZ = 60
CPU_HZ = 540
CYCLES_PER_TICK = CPU_HZ // TIMER_HZ   # 9

# Error policies
ON_ERROR_RAISE = "raise"
ON_ERROR_HALT  = "halt"
ON_ERROR_SKIP  = "skip"
ON_ERROR_RESET = "reset"
ERROR_POLICIES = (ON_ERROR_RAISE, ON_ERROR_HALT, ON_ERROR_SKIP, ON_ERROR_RESET)


class Chip8System:
    """A Machine plus pacing, error policy and breakpoints."""

    def __init__(self, cycles_per_tick: int = CYCLES_PER_TICK,
                 wait_key_index: bool = False,
                 on_error: str = ON_ERROR_RAISE,
                 rng: Optional[random.Random] = None,
                 timer_hz: int = TIMER_HZ):
        if cycles_per_tick < 1:
            raise ValueError("cycles_per_tick must be at least 1")
        if on_error not in ERROR_POLICIES:
            raise ValueError(f"unknown error policy {on_error!r}")
        self.cycles_per_tick = cycles_per_tick
        self.timer_hz = timer_hz
        self.wait_key_index = wait_key_index
        self.on_error = on_error
        self.rng = rng

        self.cpu = self._new_machine()
        self.image: Optional[bytes] = None

        self.halted: bool = False
        self.last_error: Optional[ExecError] = None
        self.error_count: int = 0
        self.frame_count: int = 0
        self.breakpoints: set[int] = set()
        self.at_breakpoint: bool = False

    def _new_machine(self) -> Machine:
        cpu = Machine(wait_key_index=self.wait_key_index, rng=self.rng)
        old = getattr(self, "cpu", None)
        if old is not None:
            cpu.on_trace = old.on_trace
            cpu.keys = old.keys
        return cpu

    # -----------------------------------------------------------------
    #  Loading
    # -----------------------------------------------------------------

    def load_binary(self, data: bytes | bytearray) -> int:
        size = self.cpu.load(data)
        self.image = bytes(data)
        self.halted = False
        return size

    def load_binary_file(self, path: str) -> int:
        size = self.cpu.load_file(path)
        self.image = bytes(self.cpu.mem[PROGRAM_START:PROGRAM_START + size])
        self.halted = False
        return size

    def reset(self):
        """Fresh machine with the last image reloaded."""
        self.cpu = self._new_machine()
        if self.image is not None:
            self.cpu.load(self.image)
        self.halted = False
        self.at_breakpoint = False

    # -----------------------------------------------------------------
    #  Execution
    # -----------------------------------------------------------------

    def step(self) -> int:
        """Execute one instruction under the error policy.

        Returns the machine's cycle count (unchanged if the step failed and
        the policy absorbed the error).
        """
        self.at_breakpoint = False
        try:
            return self.cpu.step()
        except ExecError as e:
            self.last_error = e
            self.error_count += 1
            if self.on_error == ON_ERROR_RAISE:
                raise
            if self.on_error == ON_ERROR_HALT:
                self.halted = True
            elif self.on_error == ON_ERROR_SKIP:
                self.cpu.pc = (self.cpu.pc + 2) & 0xFFFF
            elif self.on_error == ON_ERROR_RESET:
                self.reset()
            return self.cpu.cycle_count

    def run_frame(self) -> int:
        """Run one timer tick's worth of instructions, then tick the timers.

        Stops early on halt or when PC reaches a breakpoint (timers do not
        tick in that case).  Returns the number of instructions executed.
        """
        resuming = self.at_breakpoint
        self.at_breakpoint = False
        executed = 0
        for i in range(self.cycles_per_tick):
            if self.halted:
                return executed
            # Resuming from a breakpoint runs the instruction under it
            if (self.breakpoints and self.cpu.pc in self.breakpoints
                    and not (i == 0 and resuming)):
                self.at_breakpoint = True
                return executed
            self.step()
            executed += 1
        self.cpu.tick_timers()
        self.frame_count += 1
        return executed

    def run(self, max_frames: int = 1_000_000) -> int:
        """Run frames until halt, breakpoint, or max_frames.  Returns instructions."""
        total = 0
        for _ in range(max_frames):
            if self.halted:
                break
            total += self.run_frame()
            if self.at_breakpoint:
                break
        return total

    # -----------------------------------------------------------------
    #  Introspection
    # -----------------------------------------------------------------

    def dump_state(self) -> str:
        lines = ["=== Registers ===", self.cpu.dump_regs(),
                 f"  Cycles: {self.cpu.cycle_count}  Frames: {self.frame_count}",
                 f"  Halted: {self.halted}  Program: {self.cpu.program_size} bytes",
                 "",
                 "=== Driver ===",
                 f"  cycles/tick={self.cycles_per_tick} timer={self.timer_hz} Hz "
                 f"on_error={self.on_error} wait_key_index={self.wait_key_index}"]
        if self.breakpoints:
            lines.append("  Breakpoints: " +
                         " ".join(f"{a:#05x}" for a in sorted(self.breakpoints)))
        if self.last_error is not None:
            lines.append(f"  Last error ({self.error_count} total): {self.last_error}")
        return "\n".join(lines)
