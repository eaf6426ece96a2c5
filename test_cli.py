"""Tests for the disassembler, the monitor and the command-line entry point."""

import contextlib
import io
import os
import tempfile
import unittest

from chip8 import MEM_SIZE
from system import Chip8System
from cli import disasm_one, disasm_range, trace_printer, Chip8Monitor, main


def words(*ops: int) -> bytes:
    return b"".join(bytes([(op >> 8) & 0xFF, op & 0xFF]) for op in ops)


def run_main(*argv: str) -> tuple[int, str, str]:
    out, err = io.StringIO(), io.StringIO()
    with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
        try:
            code = main(list(argv))
        except SystemExit as e:
            code = e.code
    return code, out.getvalue(), err.getvalue()


class TestDisasm(unittest.TestCase):
    def test_mnemonics(self):
        cases = {
            0x00E0: "CLS",
            0x00EE: "RET",
            0x1234: "JP 0x234",
            0x2ABC: "CALL 0xabc",
            0x3A12: "SE VA, 0x12",
            0x4B00: "SNE VB, 0x00",
            0x5120: "SE V1, V2",
            0x6C2A: "LD VC, 0x2a",
            0x7101: "ADD V1, 0x01",
            0x8124: "ADD V1, V2",
            0x812E: "SHL V1, V2",
            0x9340: "SNE V3, V4",
            0xA300: "LD I, 0x300",
            0xB200: "JP V0, 0x200",
            0xC70F: "RND V7, 0x0f",
            0xD015: "DRW V0, V1, 5",
            0xE59E: "SKP V5",
            0xE5A1: "SKNP V5",
            0xF30A: "LD V3, K",
            0xF233: "LD B, V2",
            0xFF65: "LD VF, [I]",
        }
        for op, text in cases.items():
            self.assertEqual(disasm_one(op), text, f"{op:04X}")

    def test_unknown(self):
        for op in (0x0123, 0x5001, 0x8008, 0xE000, 0xF0FF):
            self.assertEqual(disasm_one(op), "???")

    def test_range(self):
        mem = bytearray(MEM_SIZE)
        mem[0x200:0x204] = words(0x6001, 0x1200)
        out = disasm_range(mem, 0x200, 2)
        self.assertEqual(out, [(0x200, 0x6001, "LD V0, 0x01"),
                               (0x202, 0x1200, "JP 0x200")])
        self.assertEqual(len(disasm_range(mem, MEM_SIZE - 2, 5)), 1)

    def test_trace_printer(self):
        buf = io.StringIO()
        trace_printer(buf)(0x200, 0x00E0)
        self.assertEqual(buf.getvalue(), "0x200: 00e0  CLS\n")


class TestMonitor(unittest.TestCase):
    def setUp(self):
        self.sys = Chip8System()
        self.sys.load_binary(words(0x6001, 0x7001, 0x7001, 0x1202))
        self.out = io.StringIO()
        self.mon = Chip8Monitor(self.sys, stdout=self.out)

    def cmd(self, line: str) -> str:
        self.out.seek(0)
        self.out.truncate()
        self.mon.onecmd(line)
        return self.out.getvalue()

    def test_step(self):
        text = self.cmd("step 2")
        self.assertIn("0x200: 6001  LD V0, 0x01", text)
        self.assertIn("0x202: 7001  ADD V0, 0x01", text)
        self.assertEqual(self.sys.cpu.regs[0], 2)

    def test_step_error(self):
        self.sys.load_binary(words(0x5001))
        self.assertIn("Unknown opcode", self.cmd("step"))

    def test_breakpoint_run(self):
        self.cmd("bp 0x204")
        self.assertIn("0x204", self.cmd("bp"))
        self.assertIn("Breakpoint hit at 0x204", self.cmd("run 10"))
        self.cmd("bpd all")
        self.assertEqual(self.sys.breakpoints, set())

    def test_regs_and_setreg(self):
        self.cmd("setreg v3 0x1ff")
        self.cmd("setreg i 0x300")
        self.cmd("setreg dt 7")
        self.assertEqual(self.sys.cpu.regs[3], 0xFF)
        self.assertEqual(self.sys.cpu.index, 0x300)
        text = self.cmd("regs")
        self.assertIn("V3=ff", text)
        self.assertIn("DT=7", text)
        self.assertIn("Unknown register", self.cmd("setreg q 1"))

    def test_dump_and_setmem(self):
        self.cmd("setmem 0x300 0xde 0xad")
        self.assertIn("0x300: de ad", self.cmd("dump 0x300 2"))
        self.assertIn("Memory fault", self.cmd("setmem 0xfff 1 2"))

    def test_disasm(self):
        text = self.cmd("disasm 0x200 2")
        self.assertIn(">>> 0x200: 6001  LD V0, 0x01", text)
        self.assertIn("0x202: 7001  ADD V0, 0x01", text)

    def test_keys_and_tick(self):
        self.cmd("key a down")
        self.assertTrue(self.sys.cpu.keys[0xA])
        self.cmd("key a up")
        self.assertFalse(self.sys.cpu.keys[0xA])
        self.assertIn("Key must be 0-F", self.cmd("key 1f down"))
        self.sys.cpu.delay_timer = 2
        self.assertIn("DT=1", self.cmd("tick"))

    def test_screen(self):
        self.assertEqual(len(self.cmd("screen").splitlines()), 32)

    def test_quit(self):
        self.assertTrue(self.mon.onecmd("quit"))

    def test_bad_numbers_print_usage(self):
        cases = {
            "tick x": "Usage: tick",
            "setreg v1 zz": "Usage: setreg",
            "dump nowhere": "Usage: dump",
            "dump 0x200 many": "Usage: dump",
            "disasm 0x200 lots": "Usage: disasm",
            "bp here": "Usage: bp",
            "bpd there": "Usage: bpd",
            "setmem 0x300 1 oops": "Usage: setmem",
            "step two": "Usage: step",
            "run forever": "Usage: run",
        }
        for line, usage in cases.items():
            self.assertIn(usage, self.cmd(line), line)
        # nothing was changed by the rejected commands
        self.assertEqual(self.sys.cpu.mem[0x300], 0)
        self.assertEqual(self.sys.breakpoints, set())
        self.assertEqual(self.sys.cpu.pc, 0x200)

    def test_unknown_command(self):
        self.assertIn("Unknown command", self.cmd("frobnicate"))


class TestMain(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def rom(self, *ops: int) -> str:
        path = os.path.join(self.tmp.name, "prog.ch8")
        with open(path, "wb") as f:
            f.write(words(*ops))
        return path

    def test_no_arguments_is_usage_error(self):
        code, _, err = run_main()
        self.assertEqual(code, 2)
        self.assertIn("usage", err)

    def test_two_programs_is_usage_error(self):
        code, _, _ = run_main("a.ch8", "b.ch8")
        self.assertEqual(code, 2)

    def test_missing_file(self):
        missing = os.path.join(self.tmp.name, "nope.ch8")
        code, _, err = run_main(missing, "--headless")
        self.assertEqual(code, 1)
        self.assertIn(f"could not open {missing}", err)

    def test_too_large(self):
        path = os.path.join(self.tmp.name, "big.ch8")
        with open(path, "wb") as f:
            f.write(bytes(4000))
        code, _, err = run_main(path, "--headless")
        self.assertEqual(code, 1)
        self.assertIn("could not open", err)

    def test_headless_run(self):
        path = self.rom(0x6000, 0xF029, 0xD005, 0x1206)
        code, out, _ = run_main(path, "--headless", "--frames", "3")
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith("####"))
        self.assertIn("3 frames, 27 instructions", out)

    def test_headless_unknown_opcode(self):
        path = self.rom(0x5001)
        code, _, err = run_main(path, "--headless")
        self.assertEqual(code, 1)
        self.assertIn("Unknown opcode", err)

    def test_headless_skip_policy(self):
        path = self.rom(0x5001, 0x1202)
        code, out, _ = run_main(path, "--headless", "--frames", "1",
                                "--on-error", "skip")
        self.assertEqual(code, 0)
        self.assertIn("1 frames", out)

    def test_trace(self):
        path = self.rom(0x1200)
        code, _, err = run_main(path, "--headless", "--frames", "1",
                                "--cycles-per-tick", "2", "--trace")
        self.assertEqual(code, 0)
        self.assertEqual(err.count("0x200: 1200  JP 0x200"), 2)

    def test_bad_cycles_per_tick(self):
        path = self.rom(0x1200)
        code, _, _ = run_main(path, "--headless", "--cycles-per-tick", "0")
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
