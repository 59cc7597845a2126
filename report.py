# report.py
import os


def _level_results(result):
    l1 = f"{result.l1_name} hit" if result.l1_hit else f"{result.l1_name} miss" if result.l1_miss else ""
    l2 = "L2 hit" if result.l2_hit else "L2 miss" if result.l2_miss else ""
    return l1, l2


def _placement(result):
    if result.placed_in_l1:
        return f"Place in {result.l1_name}"
    if result.placed_in_l2:
        return "Place in L2"
    return ""


def _store_action(result):
    if not result.wrote_to_ram:
        return ""
    if result.l1_hit and result.l2_hit:
        return f"Store in {result.l1_name}, L2, RAM"
    if result.l2_hit:
        return "Store in L2, RAM"
    return "Store in RAM"


def format_operation(op, results):
    """
    Log lines for one trace operation. `results` is what
    MemoryHierarchy.execute returned: one AccessResult, or the
    (load, store) pair for a modify.
    """
    lines = [op.to_line()]
    if op.kind in ("I", "L"):
        l1, l2 = _level_results(results[0])
        action = _placement(results[0])
    elif op.kind == "S":
        l1, l2 = _level_results(results[0])
        action = _store_action(results[0])
    else:
        # the load half decides the hit/miss line, the store half the action
        l1, l2 = _level_results(results[0])
        action = _store_action(results[-1])

    if l1:
        lines.append(f"  {l1}, {l2}" if l2 else f"  {l1}")
    elif l2:
        lines.append(f"  {l2}")
    if action:
        lines.append(f"  {action}")
    return lines


def format_stats(stats):
    lines = []
    for name in ("L1I", "L1D", "L2"):
        c = stats[name]
        lines.append(f"{name}-hits:{c['hits']} {name}-misses:{c['misses']} {name}-evictions:{c['evictions']}")
    return lines


def format_geometry(cache):
    return f"{cache.name}: {cache.num_sets} sets, {cache.E} lines/set, {cache.block_size} bytes/block"


def format_cache_state(snapshot):
    lines = []
    for i, lines_in_set in enumerate(snapshot):
        lines.append(f"Set {i}:")
        for j, line in enumerate(lines_in_set):
            if line.valid:
                lines.append(f"  Line {j}: Valid=1, Tag=0x{line.tag:x}, Time={line.fifo_seq}, Data={line.data.hex()}")
            else:
                lines.append(f"  Line {j}: Valid=0, Tag=-")
    return lines


def write_final_state(snapshots, out_dir="."):
    """Dump each cache's terminal contents to <name>_final.txt; returns the paths."""
    os.makedirs(out_dir, exist_ok=True)
    paths = []
    for name, snapshot in snapshots.items():
        path = os.path.join(out_dir, f"{name}_final.txt")
        with open(path, "w") as f:
            f.write("\n".join(format_cache_state(snapshot)) + "\n")
        paths.append(path)
    return paths
