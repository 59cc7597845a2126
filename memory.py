# memory.py
import numpy as np

from cache import Cache, CacheInvariantError


class BackingStoreError(IOError):
    pass


class BackingStore:
    """
    Byte-addressable RAM image backed by a memory-mapped file.
    Addresses are not bounds-checked up front; a block that runs past
    the end of the image is reported as an I/O failure.
    """

    def __init__(self, path):
        self.path = path
        try:
            self._image = np.memmap(path, dtype=np.uint8, mode="r+")
        except (OSError, ValueError) as exc:
            raise BackingStoreError(f"cannot open backing store {path!r}: {exc}") from exc
        self.reads = 0
        self.writes = 0

    @property
    def size(self):
        return 0 if self._image is None else len(self._image)

    def _require_open(self):
        if self._image is None:
            raise BackingStoreError(f"backing store {self.path!r} is closed")

    def read_block(self, address, block_size):
        """Return the aligned block containing `address` as a uint8 array."""
        self._require_open()
        start = address & ~(block_size - 1)
        block = np.array(self._image[start:start + block_size], dtype=np.uint8)
        if len(block) != block_size:
            raise BackingStoreError(
                f"short read at 0x{start:x}: got {len(block)} of {block_size} bytes "
                f"(image is {self.size} bytes)")
        self.reads += 1
        return block

    def write_bytes(self, address, block_size, payload):
        """
        Read-modify-write of the aligned block containing `address`:
        only len(payload) bytes starting at the in-block offset change.
        """
        start = address & ~(block_size - 1)
        offset = address - start
        end = offset + len(payload)
        if end > block_size:
            raise CacheInvariantError(
                f"store of {len(payload)} bytes at offset {offset} crosses a {block_size}-byte block")
        block = self.read_block(address, block_size)
        block[offset:end] = np.frombuffer(bytes(payload), dtype=np.uint8)
        try:
            self._image[start:start + block_size] = block
            self._image.flush()
        except (OSError, ValueError) as exc:
            raise BackingStoreError(f"write at 0x{start:x} failed: {exc}") from exc
        self.writes += 1

    def read_bytes(self, address, size):
        self._require_open()
        return self._image[address:address + size].tobytes()

    def close(self):
        if self._image is not None:
            self._image.flush()
            self._image = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def create_image(path, size, rng=None):
    """Write a fresh RAM image of `size` bytes (random if `rng` is given, else zeros)."""
    if rng is None:
        data = np.zeros(size, dtype=np.uint8)
    else:
        data = rng.integers(0, 256, size=size, dtype=np.uint8)
    data.tofile(path)
    return path


class AccessResult:
    """What one protocol call did, for logging only."""

    def __init__(self, kind, address, l1_name):
        self.kind = kind
        self.address = address
        self.l1_name = l1_name
        self.l1_hit = False
        self.l1_miss = False
        self.l1_evict = False
        self.l2_hit = False
        self.l2_miss = False
        self.l2_evict = False
        self.placed_in_l1 = False
        self.placed_in_l2 = False
        self.set_l1 = None
        self.set_l2 = None
        self.wrote_to_ram = False


def _fill(cache, ram, address, set_index, victim, tag):
    # returns True when a valid line was evicted
    block = ram.read_block(address, cache.block_size)
    evicted = cache.is_valid(set_index, victim)
    if evicted:
        cache.stats.evictions += 1
    cache.fill_line(set_index, victim, tag, block)
    return evicted


def _check_store_fits(l1, l2, address, payload):
    """Reject a store that would cross an L1 or L2 block before any state changes."""
    for cache in (l1, l2):
        offset = address & (cache.block_size - 1)
        if offset + len(payload) > cache.block_size:
            raise CacheInvariantError(
                f"{cache.name}: store of {len(payload)} bytes at offset {offset} "
                f"crosses a {cache.block_size}-byte block")


def _write_through_l2(l2, ram, address, payload, result):
    tag, set_index, offset = l2.decompose(address)
    result.set_l2 = set_index
    hit, idx = l2.lookup(set_index, tag)
    if hit:
        l2.stats.hits += 1
        result.l2_hit = True
    else:
        l2.stats.misses += 1
        result.l2_miss = True
        result.l2_evict = _fill(l2, ram, address, set_index, idx, tag)
        result.placed_in_l2 = True
    l2.write_bytes(set_index, idx, offset, payload)


def access_load(l1: Cache, l2: Cache, ram: BackingStore, address, kind="L"):
    result = AccessResult(kind, address, l1.name)
    l1_tag, l1_set, _ = l1.decompose(address)
    result.set_l1 = l1_set
    l1_hit, l1_idx = l1.lookup(l1_set, l1_tag)
    if l1_hit:
        l1.stats.hits += 1
        result.l1_hit = True
        return result

    l1.stats.misses += 1
    result.l1_miss = True

    l2_tag, l2_set, _ = l2.decompose(address)
    result.set_l2 = l2_set
    l2_hit, l2_idx = l2.lookup(l2_set, l2_tag)
    if l2_hit:
        # no FIFO refresh on hit
        l2.stats.hits += 1
        result.l2_hit = True
    else:
        l2.stats.misses += 1
        result.l2_miss = True
        result.l2_evict = _fill(l2, ram, address, l2_set, l2_idx, l2_tag)
        result.placed_in_l2 = True

    # L1 is refilled from RAM, not from the L2 line
    result.l1_evict = _fill(l1, ram, address, l1_set, l1_idx, l1_tag)
    result.placed_in_l1 = True
    return result


def access_store(l1: Cache, l2: Cache, ram: BackingStore, address, payload, kind="S"):
    """
    Write-through, no-write-allocate store. L1 is only written when the
    block is already there; L2 is always brought up to date (filled from
    RAM on a miss); RAM gets exactly the payload bytes.
    """
    payload = bytes(payload)
    _check_store_fits(l1, l2, address, payload)
    result = AccessResult(kind, address, l1.name)
    l1_tag, l1_set, l1_off = l1.decompose(address)
    result.set_l1 = l1_set
    l1_hit, l1_idx = l1.lookup(l1_set, l1_tag)
    if l1_hit:
        l1.stats.hits += 1
        result.l1_hit = True
        l1.write_bytes(l1_set, l1_idx, l1_off, payload)
    else:
        l1.stats.misses += 1
        result.l1_miss = True

    _write_through_l2(l2, ram, address, payload, result)

    ram.write_bytes(address, l1.block_size, payload)
    result.wrote_to_ram = True
    return result


def access_modify(l1: Cache, l2: Cache, ram: BackingStore, address, payload):
    _check_store_fits(l1, l2, address, bytes(payload))
    load_result = access_load(l1, l2, ram, address, kind="M")
    store_result = access_store(l1, l2, ram, address, payload, kind="M")
    return load_result, store_result


class MemoryHierarchy:
    """
    L1 instruction cache, L1 data cache and a shared L2 over one
    backing store. Each cache keeps its own running CacheStats.
    """

    def __init__(self, l1i_geometry, l1d_geometry, l2_geometry, ram: BackingStore):
        self.l1i = Cache("L1I", *l1i_geometry)
        self.l1d = Cache("L1D", *l1d_geometry)
        self.l2 = Cache("L2", *l2_geometry)
        self.ram = ram

    @property
    def caches(self):
        return [self.l1i, self.l1d, self.l2]

    def fetch(self, address):
        return access_load(self.l1i, self.l2, self.ram, address, kind="I")

    def load(self, address):
        return access_load(self.l1d, self.l2, self.ram, address, kind="L")

    def store(self, address, payload):
        return access_store(self.l1d, self.l2, self.ram, address, payload, kind="S")

    def modify(self, address, payload):
        return access_modify(self.l1d, self.l2, self.ram, address, payload)

    def execute(self, op):
        """Run one MemoryOperation; always returns a list of AccessResults."""
        if op.kind == "I":
            return [self.fetch(op.address)]
        if op.kind == "L":
            return [self.load(op.address)]
        if op.kind == "S":
            return [self.store(op.address, op.payload)]
        if op.kind == "M":
            return list(self.modify(op.address, op.payload))
        raise ValueError(f"unknown operation kind {op.kind!r}")

    def stats(self):
        return {cache.name: cache.stats.as_dict() for cache in self.caches}

    def snapshots(self):
        return {cache.name: cache.snapshot() for cache in self.caches}
