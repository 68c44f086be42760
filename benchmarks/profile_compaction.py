"""Profile row compaction in Monte Carlo random-effect integration.

Measures wall-clock time, peak memory, and the number of distinct
(compacted) rows for ``integrate_random_effects`` across a grid of
prediction-set sizes and covariate cardinalities.  A covariate with few
distinct values lets many rows of a group collapse into one compact row;
a continuous covariate does not.

Usage::

    python benchmarks/profile_compaction.py          # full grid (takes ~5 min)
    python benchmarks/profile_compaction.py --quick   # reduced grid for smoke test

Outputs:
    benchmarks/results/compaction_profile.csv
    docs/image/compaction-profile/time_vs_rows.png
"""

from __future__ import annotations

import argparse
import platform
import sys
import time
import tracemalloc
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

# Ensure the package is importable when running from the repo root.
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from bayes_margins import BoundBlock, IntegrationContext  # noqa: E402
from bayes_margins import integrate_random_effects  # noqa: E402

# ------------------------------------------------------------------ #
# Configuration
# ------------------------------------------------------------------ #

N_ROWS_FULL = [100, 500, 1_000, 5_000, 10_000]
N_ROWS_QUICK = [100, 1_000]

# Distinct covariate values per row set; 0 means continuous.
CARDINALITY = [2, 10, 0]

N_GROUPS = 50
N_DRAWS = 200
K = 100
REPEATS = 3
SEED_BASE = 42

RESULTS_DIR = Path(__file__).resolve().parent / "results"
IMAGE_DIR = Path(__file__).resolve().parents[1] / "docs" / "image" / "compaction-profile"


# ------------------------------------------------------------------ #
# Benchmark helpers
# ------------------------------------------------------------------ #


def _make_inputs(
    n_rows: int, cardinality: int, seed: int
) -> tuple[np.ndarray, BoundBlock]:
    rng = np.random.default_rng(seed)
    if cardinality:
        x = rng.integers(0, cardinality, n_rows).astype(float)
    else:
        x = rng.standard_normal(n_rows)
    codes = rng.integers(0, N_GROUPS, n_rows)
    b0 = rng.normal(-0.5, 0.1, N_DRAWS)
    b1 = rng.normal(0.8, 0.1, N_DRAWS)
    linpred = b0[:, None] + np.outer(b1, x)
    block = BoundBlock(
        name="id",
        design=np.ones((n_rows, 1)),
        codes=codes,
        sd=rng.uniform(0.5, 1.0, (N_DRAWS, 1)),
    )
    return linpred, block


def _benchmark_one(n_rows: int, cardinality: int, seed: int) -> dict:
    """Run a single (n_rows, cardinality) benchmark and return metrics."""
    linpred, block = _make_inputs(n_rows, cardinality, seed)
    ctx = IntegrationContext()
    tracemalloc.start()
    t0 = time.perf_counter()
    integrate_random_effects(
        linpred, [block], k=K, link="logit", seeds=seed, backend="numpy", ctx=ctx
    )
    elapsed = time.perf_counter() - t0
    _, peak_bytes = tracemalloc.get_traced_memory()
    tracemalloc.stop()
    return {
        "time_s": elapsed,
        "peak_memory_bytes": peak_bytes,
        "n_compact": ctx.n_compact,
        "n_units": ctx.n_units[0],
    }


def run_grid(n_rows_values: list[int], repeats: int = REPEATS) -> pd.DataFrame:
    """Run the full benchmark grid and return a DataFrame of results."""
    rows: list[dict] = []
    total = len(n_rows_values) * len(CARDINALITY)
    done = 0
    for n_rows in n_rows_values:
        for cardinality in CARDINALITY:
            results = [
                _benchmark_one(n_rows, cardinality, seed=SEED_BASE + r)
                for r in range(repeats)
            ]
            done += 1
            median_time = float(np.median([r["time_s"] for r in results]))
            median_mem = float(np.median([r["peak_memory_bytes"] for r in results]))
            row = {
                "n_rows": n_rows,
                "cardinality": cardinality or "continuous",
                "n_compact": results[-1]["n_compact"],
                "compaction_ratio": results[-1]["n_compact"] / n_rows,
                "n_units": results[-1]["n_units"],
                "median_time_s": median_time,
                "median_peak_memory_MB": median_mem / (1024 * 1024),
            }
            rows.append(row)
            print(
                f"  [{done:3d}/{total}] rows={n_rows:6,d}, "
                f"cardinality={str(row['cardinality']):10s}, "
                f"compact={row['n_compact']:6,d}, "
                f"time={median_time:.4f}s, "
                f"mem={row['median_peak_memory_MB']:.2f}MB"
            )
    return pd.DataFrame(rows)


# ------------------------------------------------------------------ #
# Chart generation
# ------------------------------------------------------------------ #


def _make_time_vs_rows(df: pd.DataFrame, image_dir: Path) -> None:
    """Line plot: time vs. number of rows per covariate cardinality."""
    fig, ax = plt.subplots(figsize=(10, 6))
    for cardinality, subset in df.groupby("cardinality", sort=False):
        subset = subset.sort_values("n_rows")
        ax.plot(subset["n_rows"], subset["median_time_s"], marker="o", label=str(cardinality))
    ax.set_xlabel("Prediction rows")
    ax.set_ylabel("Median time (s)")
    ax.set_title(f"Integration Time vs. Rows ({N_DRAWS} draws, k={K})")
    ax.set_xscale("log")
    ax.set_yscale("log")
    ax.legend(title="covariate values")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    fig.savefig(image_dir / "time_vs_rows.png", dpi=150)
    plt.close(fig)
    print(f"  Saved {image_dir / 'time_vs_rows.png'}")


# ------------------------------------------------------------------ #
# Main
# ------------------------------------------------------------------ #


def main() -> None:
    parser = argparse.ArgumentParser(description="Profile row compaction")
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Run a reduced grid for quick smoke testing",
    )
    args = parser.parse_args()

    n_rows_values = N_ROWS_QUICK if args.quick else N_ROWS_FULL

    print("=" * 60)
    print("Row Compaction Profile")
    print("=" * 60)
    print(f"  Platform:    {platform.platform()}")
    print(f"  Python:      {platform.python_version()}")
    print(f"  NumPy:       {np.__version__}")
    print(f"  CPU:         {platform.processor()}")
    print(f"  Rows:        {n_rows_values}")
    print(f"  Groups:      {N_GROUPS}")
    print(f"  Draws x k:   {N_DRAWS} x {K}")
    print(f"  Repeats:     {REPEATS}")
    print()

    print("Running benchmarks...")
    df = run_grid(n_rows_values, repeats=REPEATS)

    RESULTS_DIR.mkdir(parents=True, exist_ok=True)
    csv_path = RESULTS_DIR / "compaction_profile.csv"
    df.to_csv(csv_path, index=False)
    print(f"\nSaved results to {csv_path}")

    IMAGE_DIR.mkdir(parents=True, exist_ok=True)
    print("\nGenerating charts...")
    _make_time_vs_rows(df, IMAGE_DIR)

    print("\nKey findings:")
    for cardinality, subset in df.groupby("cardinality", sort=False):
        print(
            f"  {str(cardinality):10s}  mean compaction ratio="
            f"{subset['compaction_ratio'].mean():.3f}, "
            f"max time={subset['median_time_s'].max():.4f}s"
        )


if __name__ == "__main__":
    main()
