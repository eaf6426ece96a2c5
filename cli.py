#!/usr/bin/env python3
"""
CHIP-8 Emulator / Monitor CLI
=============================
Command-line entry point for the CHIP-8 virtual machine.

Provides:
  - Program loading (exactly one program image per invocation)
  - A pygame window (default), a headless run, or an interactive monitor
  - Step / run / breakpoint execution in the monitor
  - Register, memory and framebuffer inspection / modification
  - Disassembly and an optional per-instruction trace

Usage:
  python cli.py PROGRAM [--scale N] [--cycles-per-tick N] [--wait-key-index]
                [--on-error raise|halt|skip|reset] [--trace] [--seed N]
                [--monitor | --headless [--frames N]]

Exit status: 0 on a normal exit, 1 if the program cannot be loaded or
execution stops on an error, 2 on a usage error.
"""

from __future__ import annotations
import argparse
import cmd
import random
import shlex
import sys
from typing import Optional

from chip8 import Chip8Error, ExecError, LoadError, MEM_SIZE, NUM_KEYS
from system import Chip8System, CYCLES_PER_TICK, ERROR_POLICIES, ON_ERROR_RAISE
from display import FramebufferDisplay, HeadlessDisplay, DEFAULT_SCALE
from audio import Beeper

# ---------------------------------------------------------------------------
#  Disassembler
# ---------------------------------------------------------------------------

ALU_NAMES = {
    0x0: "LD", 0x1: "OR", 0x2: "AND", 0x3: "XOR", 0x4: "ADD",
    0x5: "SUB", 0x6: "SHR", 0x7: "SUBN", 0xE: "SHL",
}

MISC_FORMATS = {
    0x07: "LD V{x:X}, DT",
    0x0A: "LD V{x:X}, K",
    0x15: "LD DT, V{x:X}",
    0x18: "LD ST, V{x:X}",
    0x1E: "ADD I, V{x:X}",
    0x29: "LD F, V{x:X}",
    0x33: "LD B, V{x:X}",
    0x55: "LD [I], V{x:X}",
    0x65: "LD V{x:X}, [I]",
}


def disasm_one(opcode: int) -> str:
    """Disassemble one instruction word.  Unknown words give '???'."""
    f = opcode >> 12
    x = (opcode >> 8) & 0xF
    y = (opcode >> 4) & 0xF
    n = opcode & 0xF
    nn = opcode & 0xFF
    nnn = opcode & 0xFFF

    if f == 0x0:
        if opcode == 0x00E0:
            return "CLS"
        if opcode == 0x00EE:
            return "RET"
    elif f == 0x1:
        return f"JP {nnn:#05x}"
    elif f == 0x2:
        return f"CALL {nnn:#05x}"
    elif f == 0x3:
        return f"SE V{x:X}, {nn:#04x}"
    elif f == 0x4:
        return f"SNE V{x:X}, {nn:#04x}"
    elif f == 0x5:
        if n == 0:
            return f"SE V{x:X}, V{y:X}"
    elif f == 0x6:
        return f"LD V{x:X}, {nn:#04x}"
    elif f == 0x7:
        return f"ADD V{x:X}, {nn:#04x}"
    elif f == 0x8:
        name = ALU_NAMES.get(n)
        if name is not None:
            return f"{name} V{x:X}, V{y:X}"
    elif f == 0x9:
        if n == 0:
            return f"SNE V{x:X}, V{y:X}"
    elif f == 0xA:
        return f"LD I, {nnn:#05x}"
    elif f == 0xB:
        return f"JP V0, {nnn:#05x}"
    elif f == 0xC:
        return f"RND V{x:X}, {nn:#04x}"
    elif f == 0xD:
        return f"DRW V{x:X}, V{y:X}, {n}"
    elif f == 0xE:
        if nn == 0x9E:
            return f"SKP V{x:X}"
        if nn == 0xA1:
            return f"SKNP V{x:X}"
    elif f == 0xF:
        fmt = MISC_FORMATS.get(nn)
        if fmt is not None:
            return fmt.format(x=x)
    return "???"


def disasm_range(mem: bytes | bytearray, addr: int,
                 count: int) -> list[tuple[int, int, str]]:
    """Disassemble *count* words from *addr*.  Returns (addr, opcode, text)."""
    out = []
    for _ in range(count):
        if addr + 1 >= len(mem):
            break
        opcode = (mem[addr] << 8) | mem[addr + 1]
        out.append((addr, opcode, disasm_one(opcode)))
        addr += 2
    return out


def trace_printer(out=None):
    """Return an on_trace callback that writes one line per instruction."""
    def _trace(pc: int, opcode: int):
        print(f"{pc:#05x}: {opcode:04x}  {disasm_one(opcode)}",
              file=out if out is not None else sys.stderr)
    return _trace

# ---------------------------------------------------------------------------
#  Interactive monitor
# ---------------------------------------------------------------------------

class Chip8Monitor(cmd.Cmd):
    """Interactive monitor for a Chip8System."""

    intro = (
        "\n"
        "CHIP-8 Monitor.  Type 'help' for commands, 'quit' to exit.\n"
    )
    prompt = "C8> "

    def __init__(self, system: Chip8System, stdout=None):
        super().__init__(stdout=stdout)
        self.sys = system

    def _print(self, *args):
        print(*args, file=self.stdout)

    # -- Parsing helpers --

    def _parse_addr(self, s: str) -> int:
        """Parse an address (hex with optional 0x prefix, or pc / i)."""
        s = s.strip().lower()
        if s == "pc":
            return self.sys.cpu.pc
        if s == "i":
            return self.sys.cpu.index
        return int(s, 0)

    def _parse_int(self, s: str) -> int:
        return int(s.strip(), 0)

    # ================================================================
    #  Commands
    # ================================================================

    # -- Execution --

    def do_step(self, arg):
        """Step N instructions: step [count]"""
        try:
            count = self._parse_int(arg) if arg.strip() else 1
        except ValueError:
            self._print("Usage: step [count]")
            return
        cpu = self.sys.cpu
        for _ in range(count):
            if self.sys.halted:
                self._print("CPU is halted.")
                break
            addr_before = cpu.pc
            try:
                opcode = cpu.fetch_opcode(addr_before)
                self.sys.step()
            except ExecError as e:
                self._print(f"Error: {e}")
                break
            cpu = self.sys.cpu
            self._print(f"  {addr_before:#05x}: {opcode:04x}  {disasm_one(opcode)}")

    def do_run(self, arg):
        """Run frames until halt/breakpoint: run [max_frames]"""
        try:
            frames = self._parse_int(arg) if arg.strip() else 1_000_000
        except ValueError:
            self._print("Usage: run [max_frames]")
            return
        start = self.sys.cpu.cycle_count
        try:
            self.sys.run(frames)
        except ExecError as e:
            self._print(f"Error: {e}")
            return
        ran = self.sys.cpu.cycle_count - start
        if self.sys.at_breakpoint:
            self._print(f"Breakpoint hit at {self.sys.cpu.pc:#05x}")
        elif self.sys.halted:
            self._print(f"CPU halted: {self.sys.last_error}")
        else:
            self._print(f"Stopped after {ran} instructions.")

    do_c = do_run

    def do_tick(self, arg):
        """Tick the delay/sound timers once: tick [count]"""
        try:
            count = self._parse_int(arg) if arg.strip() else 1
        except ValueError:
            self._print("Usage: tick [count]")
            return
        for _ in range(count):
            self.sys.cpu.tick_timers()
        self._print(f"  DT={self.sys.cpu.delay_timer} ST={self.sys.cpu.sound_timer}")

    def do_reset(self, arg):
        """Reset the machine and reload the program."""
        self.sys.reset()
        self._print("Machine reset.")

    # -- Breakpoints --

    def do_bp(self, arg):
        """Set breakpoint: bp <address>  (no argument lists them)"""
        if not arg.strip():
            if self.sys.breakpoints:
                self._print("Breakpoints:")
                for a in sorted(self.sys.breakpoints):
                    self._print(f"  {a:#05x}")
            else:
                self._print("No breakpoints set.")
            return
        try:
            addr = self._parse_addr(arg)
        except ValueError:
            self._print("Usage: bp <address>")
            return
        self.sys.breakpoints.add(addr)
        self._print(f"Breakpoint set at {addr:#05x}")

    def do_bpd(self, arg):
        """Delete breakpoint: bpd <address|all>"""
        if arg.strip().lower() == "all":
            self.sys.breakpoints.clear()
            self._print("All breakpoints cleared.")
            return
        try:
            addr = self._parse_addr(arg)
        except ValueError:
            self._print("Usage: bpd <address|all>")
            return
        self.sys.breakpoints.discard(addr)
        self._print(f"Breakpoint at {addr:#05x} removed.")

    # -- Inspection --

    def do_regs(self, arg):
        """Show registers, timers and stack."""
        self._print(self.sys.cpu.dump_regs())
        self._print(f"  Cycles: {self.sys.cpu.cycle_count}")

    def do_status(self, arg):
        """Show machine and driver status."""
        self._print(self.sys.dump_state())

    def do_setreg(self, arg):
        """Set register: setreg <V0-VF|i|pc|dt|st> <value>"""
        parts = shlex.split(arg)
        if len(parts) < 2:
            self._print("Usage: setreg <reg> <value>")
            return
        reg_s = parts[0].lower()
        try:
            val = self._parse_int(parts[1])
        except ValueError:
            self._print("Usage: setreg <reg> <value>")
            return
        cpu = self.sys.cpu
        if reg_s == "pc":
            cpu.pc = val & 0xFFFF
        elif reg_s == "i":
            cpu.index = val & 0xFFFF
        elif reg_s == "dt":
            cpu.delay_timer = val & 0xFF
        elif reg_s == "st":
            cpu.sound_timer = val & 0xFF
        elif reg_s.startswith("v") and len(reg_s) == 2:
            try:
                idx = int(reg_s[1], 16)
            except ValueError:
                self._print("Register must be V0-VF.")
                return
            cpu.regs[idx] = val & 0xFF
        else:
            self._print("Unknown register.")
            return
        self._print(f"  {reg_s.upper()} = {val:#x}")

    def do_dump(self, arg):
        """Hex dump memory: dump <address> [count]
        Count defaults to 64 bytes."""
        parts = shlex.split(arg)
        if not parts:
            self._print("Usage: dump <address> [count]")
            return
        try:
            addr = self._parse_addr(parts[0])
            count = self._parse_int(parts[1]) if len(parts) > 1 else 64
        except ValueError:
            self._print("Usage: dump <address> [count]")
            return
        end = min(addr + count, MEM_SIZE)
        mem = self.sys.cpu.mem
        for row_start in range(addr, end, 16):
            row = mem[row_start:min(row_start + 16, end)]
            hex_str = " ".join(f"{b:02x}" for b in row)
            self._print(f"  {row_start:#05x}: {hex_str}")

    def do_setmem(self, arg):
        """Set memory bytes: setmem <address> <byte> [byte] ..."""
        parts = shlex.split(arg)
        if len(parts) < 2:
            self._print("Usage: setmem <addr> <byte...>")
            return
        try:
            addr = self._parse_addr(parts[0])
            values = [self._parse_int(tok) for tok in parts[1:]]
        except ValueError:
            self._print("Usage: setmem <addr> <byte...>")
            return
        try:
            for i, val in enumerate(values):
                self.sys.cpu.mem_write8(addr + i, val)
        except ExecError as e:
            self._print(f"Error: {e}")
            return
        self._print(f"  Wrote {len(parts) - 1} bytes at {addr:#05x}")

    def do_disasm(self, arg):
        """Disassemble: disasm [address] [count]
        Defaults to current PC, 16 instructions."""
        parts = shlex.split(arg)
        try:
            addr = self._parse_addr(parts[0]) if parts else self.sys.cpu.pc
            count = self._parse_int(parts[1]) if len(parts) > 1 else 16
        except ValueError:
            self._print("Usage: disasm [address] [count]")
            return
        for a, opcode, text in disasm_range(self.sys.cpu.mem, addr, count):
            marker = ">>>" if a == self.sys.cpu.pc else "   "
            self._print(f"  {marker} {a:#05x}: {opcode:04x}  {text}")

    def do_screen(self, arg):
        """Print the framebuffer as text."""
        self._print(HeadlessDisplay(self.sys).render_text())

    def do_key(self, arg):
        """Press or release a key: key <0-F> down|up"""
        parts = shlex.split(arg)
        if len(parts) != 2 or parts[1].lower() not in ("down", "up"):
            self._print("Usage: key <0-F> down|up")
            return
        try:
            k = int(parts[0], 16)
        except ValueError:
            k = -1
        if not 0 <= k < NUM_KEYS:
            self._print("Key must be 0-F.")
            return
        self.sys.cpu.keys[k] = parts[1].lower() == "down"
        self._print(f"  key {k:X} {parts[1].lower()}")

    def do_cycles(self, arg):
        """Show total instruction count."""
        self._print(f"  {self.sys.cpu.cycle_count} cycles")

    # -- Misc --

    def do_quit(self, arg):
        """Exit the monitor."""
        self._print("Goodbye.")
        return True
    do_exit = do_quit
    do_q = do_quit

    def do_EOF(self, arg):
        self._print()
        return self.do_quit(arg)

    def default(self, line):
        self._print(f"Unknown command: {line.split()[0]!r}. Type 'help' for available commands.")

    def emptyline(self):
        """Don't repeat the last command on empty input."""
        pass

# ---------------------------------------------------------------------------
#  Main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chip8vm",
        description="CHIP-8 virtual machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py pong.ch8\n"
               "  python cli.py pong.ch8 --scale 10 --cycles-per-tick 12\n"
               "  python cli.py pong.ch8 --monitor\n"
               "  python cli.py test.ch8 --headless --frames 120\n"
    )
    parser.add_argument("program", help="CHIP-8 program image")
    parser.add_argument("--scale", type=int, default=DEFAULT_SCALE, metavar="N",
                        help=f"Pixel scale factor for the window (default: {DEFAULT_SCALE})")
    parser.add_argument("--cycles-per-tick", type=int, default=CYCLES_PER_TICK,
                        metavar="N",
                        help=f"Instructions per 60 Hz timer tick (default: {CYCLES_PER_TICK})")
    parser.add_argument("--wait-key-index", action="store_true",
                        help="FX0A stores the pressed key's index instead of 1")
    parser.add_argument("--on-error", choices=ERROR_POLICIES, default=ON_ERROR_RAISE,
                        help="What to do when an instruction fails (default: raise)")
    parser.add_argument("--trace", action="store_true",
                        help="Print every executed instruction to stderr")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the RND instruction")
    parser.add_argument("--no-sound", action="store_true",
                        help="Do not open the audio mixer")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--monitor", action="store_true",
                      help="Start the interactive monitor instead of a window")
    mode.add_argument("--headless", action="store_true",
                      help="Run without a window and print the final screen")
    parser.add_argument("--frames", type=int, default=600, metavar="N",
                        help="Frames to run with --headless (default: 600)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.cycles_per_tick < 1:
        print("--cycles-per-tick must be at least 1", file=sys.stderr)
        return 2

    rng = random.Random(args.seed) if args.seed is not None else None
    sys_emu = Chip8System(cycles_per_tick=args.cycles_per_tick,
                          wait_key_index=args.wait_key_index,
                          on_error=args.on_error, rng=rng)

    try:
        size = sys_emu.load_binary_file(args.program)
    except LoadError as e:
        print(f"could not open {args.program}: {e}", file=sys.stderr)
        return 1

    if args.trace:
        sys_emu.cpu.on_trace = trace_printer()

    # ---- Monitor -------------------------------------------------------
    if args.monitor:
        print(f"Loaded {size} bytes from '{args.program}'")
        mon = Chip8Monitor(sys_emu)
        try:
            mon.cmdloop()
        except KeyboardInterrupt:
            print("\nInterrupted. Goodbye.")
        return 0

    # ---- Headless --------------------------------------------------------
    if args.headless:
        disp = HeadlessDisplay(sys_emu)
        try:
            frames = disp.run(args.frames)
        except ExecError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(disp.render_text())
        print(f"{frames} frames, {sys_emu.cpu.cycle_count} instructions")
        return 1 if sys_emu.halted else 0

    # ---- Window ----------------------------------------------------------
    try:
        import pygame  # noqa: F401
    except ImportError as e:
        print(f"[display] pygame not available: {e}", file=sys.stderr)
        print("[display] Install with: pip install pygame", file=sys.stderr)
        return 1

    beeper = None if args.no_sound else Beeper()
    disp = FramebufferDisplay(sys_emu, scale=args.scale, beeper=beeper)
    try:
        disp.run()
    except Chip8Error as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if beeper is not None:
            beeper.close()
    return 1 if sys_emu.halted else 0


if __name__ == "__main__":
    sys.exit(main())
