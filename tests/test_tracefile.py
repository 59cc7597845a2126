# tests/test_tracefile.py
import os
import shutil
import tempfile
import unittest

import numpy as np

from tracefile import (MemoryOperation, TraceGenerator, generate_trace, parse_trace_line,
                       read_trace, write_trace)


class TestParseTraceLine(unittest.TestCase):
    def test_load_and_fetch(self):
        self.assertEqual(parse_trace_line("L 10, 1\n"), MemoryOperation("L", 0x10, 1))
        self.assertEqual(parse_trace_line(" I 0400d7d4, 8"), MemoryOperation("I", 0x400d7d4, 8))

    def test_store_and_modify_payload(self):
        op = parse_trace_line("S 1a0, 2, BEEF\n")
        self.assertEqual(op, MemoryOperation("S", 0x1a0, 2, "beef"))
        self.assertEqual(op.payload, b"\xbe\xef")
        op = parse_trace_line("M 0x24, 4, 01020304")
        self.assertEqual(op.address, 0x24)
        self.assertEqual(op.payload, bytes([1, 2, 3, 4]))

    def test_store_without_data(self):
        op = parse_trace_line("S 20, 1")
        self.assertEqual(op.payload, b"")

    def test_malformed(self):
        for line in ("", "garbage", "X 10, 1", "L zz, 1", "L 10", "S 10, 2, abc", "S 10, 2, zz"):
            self.assertIsNone(parse_trace_line(line), line)

    def test_to_line(self):
        self.assertEqual(MemoryOperation("L", 0x10, 1).to_line(), "L 10, 1")
        self.assertEqual(MemoryOperation("M", 0x1a0, 2, "beef").to_line(), "M 1a0, 2, beef")


class TestTraceFiles(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, "t.trace")

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_read_skips_bad_lines(self):
        with open(self.path, "w") as f:
            f.write("L 0, 1\n\nbogus line\nS 4, 1, ff\n")
        bad = []
        ops = list(read_trace(self.path, bad.append))
        self.assertEqual([op.kind for op in ops], ["L", "S"])
        self.assertEqual(bad, ["bogus line\n"])

    def test_write_then_read(self):
        ops = [MemoryOperation("I", 0x0, 4), MemoryOperation("S", 0x3c, 2, "0a0b")]
        write_trace(self.path, ops)
        self.assertEqual(list(read_trace(self.path)), ops)


class TestTraceGenerator(unittest.TestCase):
    def _ops(self, pattern, seed=1, n=300):
        gen = TraceGenerator(np.random.default_rng(seed), working_set_bytes=1024,
                             block_size=16, access_pattern=pattern, read_ratio=0.7)
        return gen.generate(n)

    def test_accesses_stay_in_block_and_working_set(self):
        for pattern in ("sequential", "random", "mixed"):
            for op in self._ops(pattern):
                self.assertIn(op.kind, ("I", "L", "S", "M"))
                self.assertLess(op.address, 1024)
                self.assertLessEqual(op.address % 16 + op.size, 16)
                if op.kind in ("S", "M"):
                    self.assertEqual(len(op.payload), op.size)
                else:
                    self.assertEqual(op.data, "")

    def test_sequential_walks_blocks_in_order(self):
        blocks = [op.address // 16 for op in self._ops("sequential", n=80)]
        self.assertEqual(blocks, [i % 64 for i in range(80)])

    def test_seed_is_reproducible(self):
        self.assertEqual(self._ops("mixed", seed=9), self._ops("mixed", seed=9))

    def test_tiny_blocks(self):
        gen = TraceGenerator(np.random.default_rng(0), working_set_bytes=8, block_size=1)
        for op in gen.generate(20):
            self.assertEqual(op.size, 1)

    def test_generate_trace_matches_generator(self):
        ops = generate_trace(50, 1024, 16, pattern="sequential", read_ratio=0.5,
                             rng=np.random.default_rng(2))
        gen = TraceGenerator(np.random.default_rng(2), working_set_bytes=1024, block_size=16,
                             access_pattern="sequential", read_ratio=0.5)
        self.assertEqual(ops, gen.generate(50))
        self.assertEqual(len(generate_trace(10, 256, 16)), 10)


if __name__ == "__main__":
    unittest.main()
