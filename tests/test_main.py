# tests/test_main.py
import contextlib
import io
import json
import os
import shutil
import tempfile
import unittest

import numpy as np

import main


class TestMain(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.trace = os.path.join(self.tmpdir, "small.trace")
        self.ram = os.path.join(self.tmpdir, "RAM.dat")
        (np.arange(2048) % 256).astype(np.uint8).tofile(self.ram)
        with open(self.trace, "w") as f:
            f.write("L 0, 1\nL 10, 1\nL 0, 1\nS 24, 2, 0102\n")
        self.cfg_path = os.path.join(self.tmpdir, "config.json")
        with open(self.cfg_path, "w") as f:
            json.dump({"output": {
                "results_dir": os.path.join(self.tmpdir, "results"),
                "final_state_dir": os.path.join(self.tmpdir, "final"),
                "stats_plot": os.path.join(self.tmpdir, "results", "stats.png"),
                "occupancy_plot": os.path.join(self.tmpdir, "results", "occupancy.png"),
            }}, f)

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def _run(self, *extra):
        argv = ["--config", self.cfg_path, "-L1s", "1", "-L1E", "2", "-L1b", "4",
                "-L2s", "2", "-L2E", "2", "-L2b", "4", "-t", self.trace, "--ram", self.ram]
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main.main(argv + list(extra))
        return code, out.getvalue(), err.getvalue()

    def test_full_run(self):
        code, out, _ = self._run()
        self.assertEqual(code, 0)
        self.assertIn("L1D: 2 sets, 2 lines/set, 16 bytes/block", out)
        self.assertIn("L 10, 1\n  L1D miss, L2 miss\n  Place in L1D", out)
        self.assertIn("S 24, 2, 0102\n  L1D miss, L2 miss\n  Store in RAM", out)
        self.assertIn("L1I-hits:0 L1I-misses:0 L1I-evictions:0", out)
        self.assertIn("L1D-hits:1 L1D-misses:3 L1D-evictions:0", out)
        self.assertIn("L2-hits:0 L2-misses:3 L2-evictions:0", out)
        for name in ("L1I", "L1D", "L2"):
            self.assertTrue(os.path.exists(os.path.join(self.tmpdir, "final", f"{name}_final.txt")))
        self.assertTrue(os.path.exists(os.path.join(self.tmpdir, "results", "summary.json")))
        self.assertTrue(os.path.exists(os.path.join(self.tmpdir, "results", "stats.png")))

    def test_quiet_prints_only_stats(self):
        code, out, _ = self._run("--quiet", "--no-plots")
        self.assertEqual(code, 0)
        self.assertEqual(out.strip().splitlines(), [
            "L1I-hits:0 L1I-misses:0 L1I-evictions:0",
            "L1D-hits:1 L1D-misses:3 L1D-evictions:0",
            "L2-hits:0 L2-misses:3 L2-evictions:0",
        ])
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir, "results", "stats.png")))

    def test_bad_geometry_is_reported(self):
        code, _, err = self._run("-L1E", "0")
        self.assertEqual(code, 1)
        self.assertIn("associativity", err)

    def test_missing_ram_is_reported(self):
        os.remove(self.ram)
        code, out, err = self._run("--no-plots")
        self.assertEqual(code, 1)
        self.assertIn("backing store", err)
        self.assertNotIn("L1D-hits", out)

    def test_missing_config_file(self):
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            code = main.main(["--config", os.path.join(self.tmpdir, "nope.json")])
        self.assertEqual(code, 1)
        self.assertIn("not found", err.getvalue())

    def test_banner_order(self):
        code, out, _ = self._run("--no-plots")
        self.assertEqual(code, 0)
        self.assertLess(out.index("L1D:"), out.index("L1I:"))
        self.assertLess(out.index("L1I:"), out.index("L2:"))

    def test_block_crossing_store_is_internal_error(self):
        with open(self.trace, "w") as f:
            f.write("L 0, 1\nS f, 2, aabb\n")
        code, _, err = self._run("--no-plots")
        self.assertEqual(code, 2)
        self.assertIn("internal error", err)

    def test_unreadable_config(self):
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            code = main.main(["--config", self.tmpdir])
        self.assertEqual(code, 1)
        self.assertIn("cannot read config", err.getvalue())

    def test_overrides(self):
        args = main.build_parser().parse_args(["-L1s", "3", "-L2b", "5", "-t", "x.trace"])
        cfg = main.apply_overrides({"cache": {"l2": {"s": 1, "E": 4, "b": 4}}}, args)
        self.assertEqual(cfg["cache"]["l1i"], {"s": 3})
        self.assertEqual(cfg["cache"]["l1d"], {"s": 3})
        self.assertEqual(cfg["cache"]["l2"], {"s": 1, "E": 4, "b": 5})
        self.assertEqual(cfg["run"], {"trace": "x.trace"})


if __name__ == "__main__":
    unittest.main()
