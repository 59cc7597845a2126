# main.py
import argparse
import json
import os
import sys
from cache import CacheInvariantError
from memory import BackingStoreError
from report import format_geometry, format_operation, format_stats, write_final_state
from runner import ConfigError, SimulationRunner, generate_workload
from visualize import plot_cache_stats, plot_set_occupancy


def load_config(path="config.json"):
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"cannot read config {path!r}: {exc}") from exc


def build_parser():
    parser = argparse.ArgumentParser(description="Two-level L1I/L1D/L2 cache simulator")
    parser.add_argument("--config", default="config.json", help="JSON config file")
    for level in ("L1", "L2"):
        for key, label in (("s", "set index bits"), ("E", "lines per set"), ("b", "block offset bits")):
            parser.add_argument(f"-{level}{key}", type=int, dest=f"{level}{key}",
                                help=f"{level} {label}")
    parser.add_argument("-t", dest="trace", help="trace file")
    parser.add_argument("--ram", help="backing store image (default RAM.dat)")
    parser.add_argument("--generate", action="store_true",
                        help="write a synthetic trace and RAM image first")
    parser.add_argument("--quiet", action="store_true", help="only print final statistics")
    parser.add_argument("--no-plots", action="store_true")
    return parser


def apply_overrides(cfg, args):
    cache = cfg.setdefault("cache", {})
    for name, level in (("l1i", "L1"), ("l1d", "L1"), ("l2", "L2")):
        for key in ("s", "E", "b"):
            value = getattr(args, f"{level}{key}")
            if value is not None:
                section = cache.get(name)
                if not isinstance(section, dict):
                    section = cache[name] = {}
                section[key] = value
    run = cfg.setdefault("run", {})
    if args.trace:
        run["trace"] = args.trace
    if args.ram:
        run["ram"] = args.ram
    return cfg


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        if os.path.exists(args.config):
            cfg = load_config(args.config)
        elif args.config != "config.json":
            raise ConfigError(f"config file {args.config!r} not found")
        else:
            cfg = {}
        apply_overrides(cfg, args)
        out_cfg = cfg.get("output", {})
        runner = SimulationRunner(cfg)
        if args.generate:
            runner.trace_path = args.trace or cfg.get("generate", {}).get("trace", "generated.trace")
            generate_workload(cfg, runner.trace_path, runner.ram_path)
            print("Generated workload:", runner.trace_path, runner.ram_path)

        with runner:
            if not args.quiet:
                for cache in (runner.hierarchy.l1d, runner.hierarchy.l1i, runner.hierarchy.l2):
                    print(format_geometry(cache))

            def log_operation(op, results):
                if not args.quiet:
                    print("\n" + "\n".join(format_operation(op, results)))

            def log_parse_error(line):
                if not args.quiet:
                    print(f"Failed to parse: {line}", end="" if line.endswith("\n") else "\n")

            summary = runner.run(on_operation=log_operation, on_error=log_parse_error)
            print("")
            print("\n".join(format_stats(summary["caches"])))

            snapshots = runner.hierarchy.snapshots()
            write_final_state(snapshots, out_cfg.get("final_state_dir", "."))
            results_path = runner.save_results(summary, out_cfg)
            if not args.quiet:
                print("Results saved to:", results_path)

        if not args.no_plots:
            plot_cache_stats(summary, out_cfg.get("stats_plot", "results/cache_stats.png"))
            plot_set_occupancy(snapshots, out_cfg.get("occupancy_plot", "results/set_occupancy.png"))
            if not args.quiet:
                print("Plots saved in", os.path.dirname(out_cfg.get("stats_plot", "results/cache_stats.png")) or ".")
    except (ConfigError, BackingStoreError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except CacheInvariantError as exc:
        print(f"internal error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
