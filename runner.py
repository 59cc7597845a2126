# runner.py
import os
import json
import time
import numpy as np

from memory import BackingStore, BackingStoreError, MemoryHierarchy, create_image
from tracefile import generate_trace, read_trace, write_trace

CACHE_NAMES = ("l1i", "l1d", "l2")


class ConfigError(ValueError):
    pass


def validate_geometry(name, geometry):
    """Return (s, E, b) for one cache section or raise ConfigError."""
    if not isinstance(geometry, dict):
        raise ConfigError(f"{name}: missing cache geometry")
    values = []
    for key in ("s", "E", "b"):
        v = geometry.get(key)
        if isinstance(v, bool) or not isinstance(v, int):
            raise ConfigError(f"{name}.{key} must be an integer, got {v!r}")
        values.append(v)
    s, E, b = values
    if s < 0 or b < 0:
        raise ConfigError(f"{name}: s and b must be non-negative (s={s}, b={b})")
    if E < 1:
        raise ConfigError(f"{name}: associativity E must be at least 1 (E={E})")
    return s, E, b


class SimulationRunner:
    """
    Replays a trace through an L1I/L1D/L2 hierarchy, one operation at
    a time. The backing store stays open between open() and close().
    """

    def __init__(self, cfg):
        self.cfg = cfg
        cache_cfg = cfg.get("cache")
        if not isinstance(cache_cfg, dict):
            raise ConfigError("missing 'cache' section")
        self.geometry = {name: validate_geometry(name, cache_cfg.get(name)) for name in CACHE_NAMES}
        l1_block_bits = max(self.geometry["l1i"][2], self.geometry["l1d"][2])
        if self.geometry["l2"][2] < l1_block_bits:
            # an L1-sized store could otherwise straddle two L2 blocks
            raise ConfigError(
                f"l2.b ({self.geometry['l2'][2]}) must be at least the L1 block bits ({l1_block_bits})")
        run_cfg = cfg.get("run", {})
        self.trace_path = run_cfg.get("trace")
        self.ram_path = run_cfg.get("ram", "RAM.dat")
        self.hierarchy = None
        self.op_counts = {"I": 0, "L": 0, "S": 0, "M": 0}
        self.skipped = 0

    def open(self):
        try:
            ram = BackingStore(self.ram_path)
        except BackingStoreError as exc:
            raise ConfigError(str(exc)) from exc
        self.hierarchy = MemoryHierarchy(self.geometry["l1i"], self.geometry["l1d"],
                                         self.geometry["l2"], ram)
        return self.hierarchy

    def close(self):
        if self.hierarchy is not None:
            self.hierarchy.ram.close()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()

    def _on_parse_error(self, line, on_error=None):
        self.skipped += 1
        if on_error:
            on_error(line)

    def operations(self, on_error=None):
        if not self.trace_path:
            raise ConfigError("no trace file given")
        if not os.path.isfile(self.trace_path):
            raise ConfigError(f"trace file {self.trace_path!r} not found")
        return read_trace(self.trace_path, lambda line: self._on_parse_error(line, on_error))

    def run(self, ops=None, on_operation=None, on_error=None):
        """
        Execute every operation in order. `on_operation(op, results)` is
        called after each one. Returns the summary dict.
        """
        if self.hierarchy is None:
            self.open()
        if ops is None:
            ops = self.operations(on_error)
        start = time.time()
        for op in ops:
            results = self.hierarchy.execute(op)
            self.op_counts[op.kind] += 1
            if on_operation:
                on_operation(op, results)
        end = time.time()
        return self.summary(end - start)

    def summary(self, duration=0.0):
        total = sum(self.op_counts.values())
        return {
            "total_operations": total,
            "operations": dict(self.op_counts),
            "skipped_lines": self.skipped,
            "duration_s": duration,
            "throughput_ops_per_sec": total / duration if duration > 0 else 0,
            "caches": self.hierarchy.stats(),
            "geometry": {c.name: c.describe() for c in self.hierarchy.caches},
            "ram": {"reads": self.hierarchy.ram.reads, "writes": self.hierarchy.ram.writes},
        }

    def save_results(self, summary, out_cfg):
        results_dir = out_cfg.get("results_dir", "results")
        os.makedirs(results_dir, exist_ok=True)
        path = os.path.join(results_dir, out_cfg.get("results_file", "summary.json"))
        with open(path, "w") as f:
            json.dump(summary, f, indent=2)
        return path


def generate_workload(cfg, trace_path, ram_path):
    """
    Write a synthetic trace and a random RAM image big enough for it,
    using the 'generate' config section.
    """
    gen_cfg = cfg.get("generate", {})
    rng = np.random.default_rng(gen_cfg.get("random_seed", None))
    block_size = 1 << validate_geometry("l1d", cfg["cache"].get("l1d"))[2]
    working_set = gen_cfg.get("working_set_bytes", 4096)
    ops = generate_trace(
        gen_cfg.get("num_requests", 1000),
        working_set,
        block_size,
        pattern=gen_cfg.get("access_pattern", "mixed"),
        read_ratio=gen_cfg.get("read_ratio", 0.8),
        rng=rng,
    )
    largest_block = max(1 << validate_geometry(n, cfg["cache"].get(n))[2] for n in CACHE_NAMES)
    # round up so every block touched by the trace lies inside the image
    needed = -(-max(working_set, block_size) // largest_block) * largest_block
    ram_size = max(gen_cfg.get("ram_size_bytes", 0), needed)
    create_image(ram_path, ram_size, rng)
    write_trace(trace_path, ops)
    return ops
