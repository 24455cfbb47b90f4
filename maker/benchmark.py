"""Benchmark runner for the voting solver on Tower of Hanoi.

It:
- solves Hanoi for each requested number of disks,
- logs every run to JSONL,
- prints a summary table (status, steps vs. optimal, attempts, red flags, time),
- saves the summary as JSON and Markdown under a timestamped results dir.

Usage:

    python -m maker.benchmark

Optional CLI args:
    --disks 3 4 5
    --k K  --max-votes N  --parallel P
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, List

from tqdm import tqdm  # progress bar

from .config import (
    DEFAULT_K,
    DEFAULT_MAX_VOTES,
    DEFAULT_PARALLEL_SAMPLES,
    LOG_LEVEL,
    ORACLE_BACKEND,
    RUN_LOG_PATH,
    VotingConfig,
)
from .hanoi import HanoiPrompts, HanoiWorld, hanoi_solver_config, initial_state
from .llm_clients import LLMClient, Oracle
from .recorder import RunLog, RunRecorder, append_run_log
from .solver import Solver


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def solve_hanoi(
    oracle: Oracle,
    num_disks: int,
    voting: VotingConfig,
    run_log_path: str = RUN_LOG_PATH,
) -> RunLog:
    """Solve one puzzle size and append its run log."""
    world = HanoiWorld(num_disks)
    config = hanoi_solver_config(num_disks, voting=voting)
    solver = Solver(world, oracle, HanoiPrompts(), config)

    recorder = RunRecorder(problem_id=f"hanoi{num_disks}")
    await solver.run(initial_state(num_disks), recorder)

    append_run_log(recorder.run, run_log_path)
    return recorder.run


def summarize(run: RunLog) -> Dict[str, Any]:
    num_disks = run.problem.get("num_disks", 0)
    return {
        "num_disks": num_disks,
        "status": run.status,
        "steps": len(run.moves),
        "optimal_steps": 2 ** num_disks - 1,
        "attempts": run.metrics["total_attempts"],
        "rejections": run.metrics["total_rejections"],
        "tokens": run.metrics["total_tokens"],
        "consensus_steps": run.metrics["consensus_steps"],
        "max_votes_steps": run.metrics["max_votes_steps"],
        "time": run.metrics["elapsed_sec"],
        "error": run.metrics["terminated_reason"],
    }


def write_markdown_table(path: str, header: List[str], rows: List[List[str]]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write("| " + " | ".join(header) + " |\n")
        f.write("| " + " | ".join(["---"] * len(header)) + " |\n")
        for row in rows:
            f.write("| " + " | ".join(row) + " |\n")


async def run_benchmark(
    oracle: Oracle,
    disks: List[int],
    voting: VotingConfig,
    results_dir: str = "results",
    run_log_path: str = RUN_LOG_PATH,
) -> List[Dict[str, Any]]:
    summaries: List[Dict[str, Any]] = []

    with tqdm(total=len(disks), desc="Solving Hanoi") as pbar:
        for n in disks:
            run = await solve_hanoi(oracle, n, voting, run_log_path)
            summaries.append(summarize(run))
            pbar.update(1)

    print("\n=== Voting Solver Benchmark Results ===")
    print(f"k={voting.k} max_votes={voting.max_attempts} parallel={voting.parallel_samples}")
    header = (
        f"{'Disks':>5} {'Status':<8} {'Steps':>6} {'Optimal':>8} "
        f"{'Attempts':>9} {'RedFlags':>9} {'Time(s)':>9}"
    )
    print(header)
    print("-" * len(header))
    for s in summaries:
        print(
            f"{s['num_disks']:>5} {s['status']:<8} {s['steps']:>6} {s['optimal_steps']:>8} "
            f"{s['attempts']:>9} {s['rejections']:>9} {s['time']:>9.2f}"
        )
        if s["error"]:
            print(f"      error: {s['error']}")
    print()

    # ================== SAVE RESULTS TO DISK ==================
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    out_dir = os.path.join(results_dir, timestamp)
    os.makedirs(out_dir, exist_ok=True)

    with open(os.path.join(out_dir, "summary.json"), "w", encoding="utf-8") as f:
        json.dump(summaries, f, indent=2, ensure_ascii=False)

    write_markdown_table(
        os.path.join(out_dir, "summary.md"),
        header=["Disks", "Status", "Steps", "Optimal", "Attempts", "Red flags", "Time (s)"],
        rows=[
            [
                str(s["num_disks"]),
                s["status"],
                str(s["steps"]),
                str(s["optimal_steps"]),
                str(s["attempts"]),
                str(s["rejections"]),
                f"{s['time']:.2f}",
            ]
            for s in summaries
        ],
    )

    print(f"Saved summaries under: {out_dir}\n")
    return summaries


def main() -> None:
    parser = argparse.ArgumentParser(description="Voting solver benchmark on Tower of Hanoi")
    parser.add_argument(
        "--disks",
        type=int,
        nargs="+",
        default=[3],
        help="Puzzle sizes to solve",
    )
    parser.add_argument("--k", type=int, default=DEFAULT_K, help="Required vote margin")
    parser.add_argument(
        "--max-votes",
        type=int,
        default=DEFAULT_MAX_VOTES,
        help="Oracle calls per step before falling back to the leader",
    )
    parser.add_argument(
        "--parallel",
        type=int,
        default=DEFAULT_PARALLEL_SAMPLES,
        help="Oracle calls issued concurrently per wave",
    )
    parser.add_argument(
        "--reset_logs",
        action="store_true",
        help="If set, clears existing log file before running benchmark",
    )
    args = parser.parse_args()

    configure_logging()
    if args.reset_logs and os.path.exists(RUN_LOG_PATH):
        os.remove(RUN_LOG_PATH)

    voting = VotingConfig(
        k=args.k,
        max_attempts=args.max_votes,
        parallel_samples=args.parallel,
    )
    oracle = LLMClient(ORACLE_BACKEND)
    asyncio.run(run_benchmark(oracle, args.disks, voting))


if __name__ == "__main__":  # pragma: no cover
    main()
