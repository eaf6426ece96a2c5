"""
CHIP-8 Virtual Machine
=======================
An instruction-step interpreter for the CHIP-8 instruction set: 4 KiB of
memory, sixteen 8-bit V registers, the I address register, a 16-entry call
stack, delay/sound timers, a 64x32 monochrome framebuffer and a 16-key pad.

Every instruction is a big-endian 2-byte word fetched from memory at PC.
The fetch/decode/execute loop switches on the high nibble and, for the
0x0, 0x8, 0xE and 0xF groups, on the low nibble or low byte.

Nothing in here knows about windows, key codes, audio or wall-clock time.
The driver calls step() as often as it likes and tick_timers() at 60 Hz.
"""

from __future__ import annotations
import random
from typing import Callable, Optional

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE       = 4096
PROGRAM_START  = 0x200
MAX_PROGRAM_SIZE = MEM_SIZE - PROGRAM_START

WIDTH  = 64
HEIGHT = 32

NUM_REGS    = 16
STACK_DEPTH = 16
NUM_KEYS    = 16

FONT_SPRITE_SIZE = 5   # bytes per hex glyph

FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

VF = 0xF

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for everything the machine raises."""
    pass


class LoadError(Chip8Error):
    pass


class ProgramTooLarge(LoadError):
    def __init__(self, size: int):
        self.size = size
        super().__init__(f"Program is {size} bytes, "
                         f"at most {MAX_PROGRAM_SIZE} fit above {PROGRAM_START:#05x}")


class ProgramUnreadable(LoadError):
    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}" if reason else path)


class ExecError(Chip8Error):
    """An instruction could not be executed.  Machine state is untouched."""

    def __init__(self, pc: int, opcode: Optional[int], message: str = ""):
        self.pc = pc
        self.opcode = opcode
        where = f"@ {pc:#05x}"
        if opcode is not None:
            where += f" (opcode {opcode:04X})"
        super().__init__(f"{message} {where}" if message else where)


class UnknownOpcode(ExecError):
    def __init__(self, pc: int, opcode: int):
        super().__init__(pc, opcode, "Unknown opcode")


class StackOverflow(ExecError):
    def __init__(self, pc: int, opcode: int):
        super().__init__(pc, opcode, f"Call stack overflow ({STACK_DEPTH} entries)")


class StackUnderflow(ExecError):
    def __init__(self, pc: int, opcode: int):
        super().__init__(pc, opcode, "Return with empty call stack")


class MemoryFault(ExecError):
    def __init__(self, pc: int, opcode: Optional[int], address: int):
        self.address = address
        super().__init__(pc, opcode, f"Memory fault at {address:#06x}")


class InvalidKey(ExecError):
    def __init__(self, pc: int, opcode: int, key: int):
        self.key = key
        super().__init__(pc, opcode, f"Key index {key:#04x} out of range")

# ---------------------------------------------------------------------------
#  Call stack
# ---------------------------------------------------------------------------

class CallStack:
    """Fixed-capacity stack of return addresses."""

    def __init__(self, depth: int = STACK_DEPTH):
        self.depth = depth
        self._slots: list[int] = [0] * depth
        self.sp: int = 0

    def __len__(self) -> int:
        return self.sp

    @property
    def full(self) -> bool:
        return self.sp >= self.depth

    def push(self, addr: int, pc: int = 0, opcode: int = 0):
        if self.full:
            raise StackOverflow(pc, opcode)
        self._slots[self.sp] = addr & 0xFFFF
        self.sp += 1

    def pop(self, pc: int = 0, opcode: int = 0) -> int:
        if self.sp == 0:
            raise StackUnderflow(pc, opcode)
        self.sp -= 1
        return self._slots[self.sp]

    def entries(self) -> list[int]:
        """Return addresses, oldest first."""
        return self._slots[:self.sp]

# ---------------------------------------------------------------------------
#  Framebuffer
# ---------------------------------------------------------------------------

class Framebuffer:
    """WIDTH x HEIGHT grid of on/off pixels, one byte per pixel, row-major.

    Coordinates wrap on both axes, so a sprite running off the right edge
    continues on the left and one running off the bottom continues at the top.
    """

    def __init__(self, width: int = WIDTH, height: int = HEIGHT):
        self.width = width
        self.height = height
        self.pixels = bytearray(width * height)

    def clear(self):
        self.pixels[:] = bytes(len(self.pixels))

    def get(self, x: int, y: int) -> int:
        return self.pixels[(y % self.height) * self.width + (x % self.width)]

    def draw_sprite(self, x: int, y: int, rows: bytes | bytearray) -> bool:
        """XOR *rows* (one byte per row, MSB leftmost) in at (x, y).

        Returns True if any pixel went from on to off.
        """
        collision = False
        w, h = self.width, self.height
        for row, bits in enumerate(rows):
            base = ((y + row) % h) * w
            for col in range(8):
                if not (bits >> (7 - col)) & 1:
                    continue
                idx = base + (x + col) % w
                if self.pixels[idx]:
                    collision = True
                self.pixels[idx] ^= 1
        return collision

    def rows(self) -> list[list[int]]:
        w = self.width
        return [list(self.pixels[r * w:(r + 1) * w]) for r in range(self.height)]

    def to_bytes(self) -> bytes:
        return bytes(self.pixels)

    def lit(self) -> int:
        """Number of pixels currently on."""
        return sum(self.pixels)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Framebuffer):
            return NotImplemented
        return (self.width, self.height, self.pixels) == \
               (other.width, other.height, other.pixels)

# ---------------------------------------------------------------------------
#  Machine
# ---------------------------------------------------------------------------

class Machine:
    """CHIP-8 machine, instruction level.

    *wait_key_index* selects what FX0A stores once a key is down: False keeps
    the historical behaviour of storing 1, True stores the key's index as
    the instruction set describes.  *rng* feeds CXNN.
    """

    def __init__(self, wait_key_index: bool = False,
                 rng: Optional[random.Random] = None):
        self.mem = bytearray(MEM_SIZE)
        self.mem[0:len(FONT)] = FONT

        # V0..VF
        self.regs: list[int] = [0] * NUM_REGS
        self.index: int = 0          # I
        self.pc: int = PROGRAM_START
        self.stack = CallStack()

        self.delay_timer: int = 0
        self.sound_timer: int = 0

        # Written by the input layer between steps
        self.keys: list[bool] = [False] * NUM_KEYS

        self.fb = Framebuffer()

        self.cycle_count: int = 0
        self.program_size: int = 0

        self.wait_key_index = wait_key_index
        self.rng = rng if rng is not None else random.Random()

        # Callbacks
        self.on_trace: Optional[Callable[[int, int], None]] = None

    # -- Accessors --

    @property
    def framebuffer(self) -> Framebuffer:
        return self.fb

    @property
    def sound_active(self) -> bool:
        return self.sound_timer > 0

    def _check_key(self, key: int):
        if not 0 <= key < NUM_KEYS:
            raise ValueError(f"key index {key:#x} out of range 0..{NUM_KEYS - 1:#x}")

    def press(self, key: int):
        self._check_key(key)
        self.keys[key] = True

    def release(self, key: int):
        self._check_key(key)
        self.keys[key] = False

    # -- Memory access --

    def _check_range(self, addr: int, size: int, opcode: Optional[int] = None):
        if addr < 0 or addr + size > MEM_SIZE:
            bad = addr if addr < 0 or addr >= MEM_SIZE else MEM_SIZE
            raise MemoryFault(self.pc, opcode, bad)

    def mem_read8(self, addr: int) -> int:
        self._check_range(addr, 1)
        return self.mem[addr]

    def mem_write8(self, addr: int, val: int):
        self._check_range(addr, 1)
        self.mem[addr] = val & 0xFF

    def fetch_opcode(self, addr: int) -> int:
        """Read the big-endian instruction word at *addr*."""
        self._check_range(addr, 2)
        return (self.mem[addr] << 8) | self.mem[addr + 1]

    # -- Loading --

    def load(self, data: bytes | bytearray) -> int:
        """Copy a program image to 0x200 and point PC at it.

        Registers, timers, stack and framebuffer are left alone; build a
        new Machine for a full reset.
        """
        if len(data) > MAX_PROGRAM_SIZE:
            raise ProgramTooLarge(len(data))
        self.mem[0:len(FONT)] = FONT
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data
        self.pc = PROGRAM_START
        self.program_size = len(data)
        self.cycle_count = 0
        return self.program_size

    def load_file(self, path: str) -> int:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise ProgramUnreadable(path, e.strerror or str(e)) from e
        return self.load(data)

    # -- Timers --

    def tick_timers(self):
        """Count both timers down by one, stopping at zero."""
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    # =====================================================================
    #  STEP: the core decode/execute loop
    # =====================================================================

    def step(self) -> int:
        """Execute one instruction.  Returns the updated cycle count.

        Raises ExecError (state unchanged, no cycle counted) if the
        instruction cannot run.
        """
        pc = self.pc
        opcode = self.fetch_opcode(pc)

        if self.on_trace:
            self.on_trace(pc, opcode)

        f = opcode >> 12
        if   f == 0x0: self._exec_sys(opcode)
        elif f == 0x1: self.pc = opcode & 0x0FFF
        elif f == 0x2: self._exec_call(opcode)
        elif f == 0x3: self._skip_if(self.regs[(opcode >> 8) & 0xF] == opcode & 0xFF)
        elif f == 0x4: self._skip_if(self.regs[(opcode >> 8) & 0xF] != opcode & 0xFF)
        elif f == 0x5: self._exec_skip_eq_reg(opcode)
        elif f == 0x6:
            self.regs[(opcode >> 8) & 0xF] = opcode & 0xFF
            self.pc += 2
        elif f == 0x7:
            x = (opcode >> 8) & 0xF
            self.regs[x] = (self.regs[x] + (opcode & 0xFF)) & 0xFF
            self.pc += 2
        elif f == 0x8: self._exec_alu(opcode)
        elif f == 0x9: self._exec_skip_ne_reg(opcode)
        elif f == 0xA:
            self.index = opcode & 0x0FFF
            self.pc += 2
        elif f == 0xB:
            # Jump lands at V0+NNN, then the usual +2 is applied on top
            self.pc = (self.regs[0] + (opcode & 0x0FFF) + 2) & 0xFFFF
        elif f == 0xC:
            self.regs[(opcode >> 8) & 0xF] = self.rng.randrange(256) & opcode & 0xFF
            self.pc += 2
        elif f == 0xD: self._exec_draw(opcode)
        elif f == 0xE: self._exec_keys(opcode)
        else:          self._exec_misc(opcode)

        self.cycle_count += 1
        return self.cycle_count

    def _skip_if(self, cond: bool):
        self.pc += 4 if cond else 2

    # =====================================================================
    #  Group executors
    # =====================================================================

    # -- 0x0: CLS / RET --
    def _exec_sys(self, opcode: int):
        if opcode == 0x00E0:
            self.fb.clear()
            self.pc += 2
        elif opcode == 0x00EE:
            self.pc = self.stack.pop(self.pc, opcode)
        else:
            raise UnknownOpcode(self.pc, opcode)

    # -- 0x2: CALL NNN --
    def _exec_call(self, opcode: int):
        self.stack.push(self.pc + 2, self.pc, opcode)
        self.pc = opcode & 0x0FFF

    # -- 0x5 / 0x9: register compares --
    def _exec_skip_eq_reg(self, opcode: int):
        if opcode & 0xF:
            raise UnknownOpcode(self.pc, opcode)
        self._skip_if(self.regs[(opcode >> 8) & 0xF] == self.regs[(opcode >> 4) & 0xF])

    def _exec_skip_ne_reg(self, opcode: int):
        if opcode & 0xF:
            raise UnknownOpcode(self.pc, opcode)
        self._skip_if(self.regs[(opcode >> 8) & 0xF] != self.regs[(opcode >> 4) & 0xF])

    # -- 0x8: register ALU --
    def _exec_alu(self, opcode: int):
        x = (opcode >> 8) & 0xF
        y = (opcode >> 4) & 0xF
        n = opcode & 0xF
        v = self.regs

        # VF is written before Vx, so with X=F the result wins
        if n == 0x0:
            v[x] = v[y]
        elif n == 0x1:
            v[x] |= v[y]
        elif n == 0x2:
            v[x] &= v[y]
        elif n == 0x3:
            v[x] ^= v[y]
        elif n == 0x4:
            res = v[x] + v[y]
            v[VF] = 1 if res > 0xFF else 0
            v[x] = res & 0xFF
        elif n == 0x5:
            v[VF] = 1 if v[x] > v[y] else 0
            v[x] = (v[x] - v[y]) & 0xFF
        elif n == 0x6:
            v[VF] = v[x] & 0x01
            v[x] >>= 1
        elif n == 0x7:
            v[VF] = 1 if v[y] > v[x] else 0
            v[x] = (v[y] - v[x]) & 0xFF
        elif n == 0xE:
            v[VF] = 1 if v[x] & 0x80 else 0
            v[x] = (v[x] << 1) & 0xFF
        else:
            raise UnknownOpcode(self.pc, opcode)
        self.pc += 2

    # -- 0xD: DRW Vx, Vy, N --
    def _exec_draw(self, opcode: int):
        height = opcode & 0xF
        self._check_range(self.index, height, opcode)
        x = self.regs[(opcode >> 8) & 0xF]
        y = self.regs[(opcode >> 4) & 0xF]
        sprite = self.mem[self.index:self.index + height]
        self.regs[VF] = 1 if self.fb.draw_sprite(x, y, sprite) else 0
        self.pc += 2

    # -- 0xE: key skips --
    def _exec_keys(self, opcode: int):
        low = opcode & 0xFF
        if low not in (0x9E, 0xA1):
            raise UnknownOpcode(self.pc, opcode)
        key = self.regs[(opcode >> 8) & 0xF]
        if key >= NUM_KEYS:
            raise InvalidKey(self.pc, opcode, key)
        if low == 0x9E:
            self._skip_if(self.keys[key])
        else:
            self._skip_if(not self.keys[key])

    # -- 0xF: timers, keypad wait, I arithmetic, BCD, register dump/load --
    def _exec_misc(self, opcode: int):
        x = (opcode >> 8) & 0xF
        low = opcode & 0xFF

        if low == 0x07:
            self.regs[x] = self.delay_timer
        elif low == 0x0A:
            # Polls rather than blocks: PC stays put until a key is down
            for k in range(NUM_KEYS):
                if self.keys[k]:
                    self.regs[x] = k if self.wait_key_index else 1
                    break
            else:
                return
        elif low == 0x15:
            self.delay_timer = self.regs[x]
        elif low == 0x18:
            self.sound_timer = self.regs[x]
        elif low == 0x1E:
            self.index = (self.index + self.regs[x]) & 0xFFFF
        elif low == 0x29:
            self.index = self.regs[x] * FONT_SPRITE_SIZE
        elif low == 0x33:
            self._check_range(self.index, 3, opcode)
            value = self.regs[x]
            i = self.index
            self.mem[i]     = value // 100
            self.mem[i + 1] = (value % 100) // 10
            self.mem[i + 2] = value % 10
        elif low == 0x55:
            self._check_range(self.index, x + 1, opcode)
            self.mem[self.index:self.index + x + 1] = bytes(self.regs[:x + 1])
        elif low == 0x65:
            self._check_range(self.index, x + 1, opcode)
            self.regs[:x + 1] = list(self.mem[self.index:self.index + x + 1])
        else:
            raise UnknownOpcode(self.pc, opcode)
        self.pc += 2

    # -- Debug / introspection --

    def dump_regs(self) -> str:
        lines = []
        for row in range(0, NUM_REGS, 4):
            lines.append("  " + "  ".join(
                f"V{i:X}={self.regs[i]:02x}" for i in range(row, row + 4)))
        lines.append(f"  I={self.index:#06x}  PC={self.pc:#06x}  SP={self.stack.sp}")
        lines.append(f"  DT={self.delay_timer}  ST={self.sound_timer}  "
                     f"keys={''.join('1' if k else '.' for k in self.keys)}")
        if len(self.stack):
            lines.append("  stack: " + " ".join(f"{a:#05x}" for a in self.stack.entries()))
        return "\n".join(lines)
