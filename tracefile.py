# tracefile.py
import re

import numpy as np

OP_KINDS = ("I", "L", "S", "M")

_LINE_RE = re.compile(
    r"^\s*(?P<kind>[A-Za-z])\s+(?P<addr>[0-9a-fA-Fx]+)\s*,\s*(?P<size>-?\d+)"
    r"(?:\s*,\s*(?P<data>\S*))?\s*$")


class MemoryOperation:
    def __init__(self, kind, address, size, data=""):
        self.kind = kind
        self.address = address
        self.size = size
        self.data = data

    @property
    def payload(self):
        return bytes.fromhex(self.data) if self.data else b""

    def __repr__(self):
        return f"MemoryOperation({self.kind!r}, 0x{self.address:x}, {self.size}, {self.data!r})"

    def __eq__(self, other):
        if not isinstance(other, MemoryOperation):
            return NotImplemented
        return (self.kind, self.address, self.size, self.data) == \
            (other.kind, other.address, other.size, other.data)

    def to_line(self):
        if self.kind in ("S", "M"):
            return f"{self.kind} {self.address:x}, {self.size}, {self.data}"
        return f"{self.kind} {self.address:x}, {self.size}"


def parse_trace_line(line):
    """
    Parse one trace line such as `L 10, 1` or `S 1a0, 2, beef`.
    Returns a MemoryOperation, or None if the line is malformed.
    """
    m = _LINE_RE.match(line)
    if not m:
        return None
    kind = m.group("kind")
    if kind not in OP_KINDS:
        return None
    try:
        address = int(m.group("addr"), 16)
    except ValueError:
        return None
    data = m.group("data") or ""
    if kind in ("I", "L"):
        data = ""
    elif data:
        try:
            bytes.fromhex(data)
        except ValueError:
            return None
    return MemoryOperation(kind, address, int(m.group("size")), data.lower())


def read_trace(path, on_error=None):
    """Yield MemoryOperations from a trace file; malformed lines go to `on_error`."""
    with open(path, "r") as f:
        for line in f:
            if not line.strip():
                continue
            op = parse_trace_line(line)
            if op is None:
                if on_error:
                    on_error(line)
                continue
            yield op


def write_trace(path, ops):
    with open(path, "w") as f:
        for op in ops:
            f.write(op.to_line() + "\n")
    return path


class TraceGenerator:
    """
    Synthetic workload: addresses come from a sequential, random or
    mixed (mostly sequential) walk over a block-granular working set.
    """

    def __init__(self, rng, working_set_bytes=4096, block_size=16,
                 access_pattern="mixed", read_ratio=0.8):
        self.rng = rng
        self.block_size = block_size
        self.num_blocks = max(1, working_set_bytes // block_size)
        self.access_pattern = access_pattern
        self.read_ratio = read_ratio
        self._seq_ptr = 0

    def _next_sequential(self):
        addr = self._seq_ptr
        self._seq_ptr = (addr + 1) % self.num_blocks
        return addr

    def _generate_block(self):
        if self.access_pattern == "sequential":
            return self._next_sequential()
        elif self.access_pattern == "random":
            return int(self.rng.integers(0, self.num_blocks))
        else:
            if self.rng.random() < 0.8:
                return self._next_sequential()
            return int(self.rng.integers(0, self.num_blocks))

    def _access_size(self):
        sizes = [n for n in (1, 2, 4, 8) if n <= self.block_size]
        return int(self.rng.choice(sizes))

    def next_op(self):
        block = self._generate_block()
        size = self._access_size()
        # aligned to size so the access stays inside one block
        offset = int(self.rng.integers(0, self.block_size // size)) * size
        address = block * self.block_size + offset
        if self.rng.random() < self.read_ratio:
            kind = "I" if self.rng.random() < 0.25 else "L"
            return MemoryOperation(kind, address, size)
        kind = "S" if self.rng.random() < 0.5 else "M"
        data = self.rng.integers(0, 256, size=size, dtype="uint8").tobytes().hex()
        return MemoryOperation(kind, address, size, data)

    def generate(self, num_requests):
        return [self.next_op() for _ in range(num_requests)]


def generate_trace(num_requests, working_set_bytes, block_size, pattern="mixed",
                   read_ratio=0.8, rng=None):
    if rng is None:
        rng = np.random.default_rng()
    generator = TraceGenerator(rng, working_set_bytes=working_set_bytes, block_size=block_size,
                               access_pattern=pattern, read_ratio=read_ratio)
    return generator.generate(num_requests)
