# cache.py
import numpy as np


class CacheInvariantError(RuntimeError):
    """Raised when cache state would be corrupted by a caller bug."""


def decompose_address(address, s, b):
    """
    Split `address` into (tag, set_index, block_offset) for a cache
    with 2^s sets and 2^b-byte blocks.
    """
    block_offset = address & ((1 << b) - 1)
    set_index = (address >> b) & ((1 << s) - 1)
    tag = address >> (s + b)
    return tag, set_index, block_offset


class CacheStats:
    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @property
    def accesses(self):
        return self.hits + self.misses

    @property
    def hit_rate(self):
        return (self.hits / self.accesses) if self.accesses else 0

    def as_dict(self):
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hit_rate,
        }


class CacheLine:
    __slots__ = ("valid", "tag", "fifo_seq", "data")

    def __init__(self, block_size):
        self.valid = False
        self.tag = 0
        self.fifo_seq = 0
        self.data = np.zeros(block_size, dtype=np.uint8)


class LineSnapshot:
    __slots__ = ("valid", "tag", "fifo_seq", "data")

    def __init__(self, valid, tag, fifo_seq, data):
        self.valid = valid
        self.tag = tag
        self.fifo_seq = fifo_seq
        self.data = data


class Cache:
    """
    Set-associative cache with FIFO replacement.

    Geometry follows the usual (s, E, b) triple: 2^s sets of E lines,
    each line holding a 2^b-byte block. A line's FIFO stamp is taken
    from a per-cache counter when the line is filled and is never
    touched by hits.
    """

    def __init__(self, name, s, E, b):
        self.name = name
        self.s = s
        self.E = E
        self.b = b
        self.num_sets = 1 << s
        self.block_size = 1 << b
        self.fifo_time = 0
        self.stats = CacheStats()
        self.sets = [[CacheLine(self.block_size) for _ in range(E)]
                     for _ in range(self.num_sets)]

    def decompose(self, address):
        return decompose_address(address, self.s, self.b)

    def _line(self, set_index, line_index):
        if not 0 <= set_index < self.num_sets or not 0 <= line_index < self.E:
            raise CacheInvariantError(
                f"{self.name}: line ({set_index}, {line_index}) out of range")
        return self.sets[set_index][line_index]

    def lookup(self, set_index, tag):
        """
        Scan a set for `tag`.
        Returns (True, line_index) on hit and (False, victim_index) on miss.
        The victim is the first invalid line met by the scan, otherwise
        the valid line with the smallest FIFO stamp.
        """
        lines = self.sets[set_index]
        oldest = 0
        oldest_seq = lines[0].fifo_seq
        for i, line in enumerate(lines):
            if line.valid and line.tag == tag:
                return True, i
            if not line.valid:
                return False, i
            if line.fifo_seq < oldest_seq:
                oldest_seq = line.fifo_seq
                oldest = i
        return False, oldest

    def is_valid(self, set_index, line_index):
        return self._line(set_index, line_index).valid

    def fill_line(self, set_index, line_index, tag, block):
        line = self._line(set_index, line_index)
        if len(block) != self.block_size:
            raise CacheInvariantError(
                f"{self.name}: fill with {len(block)} bytes, block size is {self.block_size}")
        line.valid = True
        line.tag = tag
        line.fifo_seq = self.fifo_time
        self.fifo_time += 1
        line.data[:] = block

    def write_bytes(self, set_index, line_index, offset, payload):
        line = self._line(set_index, line_index)
        end = offset + len(payload)
        if offset < 0 or end > self.block_size:
            raise CacheInvariantError(
                f"{self.name}: write [{offset}, {end}) crosses a {self.block_size}-byte block")
        line.data[offset:end] = np.frombuffer(bytes(payload), dtype=np.uint8)

    def read_bytes(self, set_index, line_index, offset=0, size=None):
        line = self._line(set_index, line_index)
        end = self.block_size if size is None else offset + size
        return line.data[offset:end].tobytes()

    def probe(self, address):
        """Return the line index holding `address`, or None. No side effects."""
        tag, set_index, _ = self.decompose(address)
        hit, idx = self.lookup(set_index, tag)
        return idx if hit else None

    def valid_lines(self, set_index=None):
        sets = self.sets if set_index is None else [self.sets[set_index]]
        return sum(line.valid for lines in sets for line in lines)

    def snapshot(self):
        return [[LineSnapshot(line.valid, line.tag, line.fifo_seq, line.data.tobytes())
                 for line in lines]
                for lines in self.sets]

    def describe(self):
        return {
            "name": self.name,
            "s": self.s,
            "E": self.E,
            "b": self.b,
            "num_sets": self.num_sets,
            "block_size": self.block_size,
            "used_lines": self.valid_lines(),
        }
