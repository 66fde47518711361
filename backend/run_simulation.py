"""
Run many headless play sessions with a scripted policy.

Each session drives the Simulation facade with simulated time: accrue, roll
for events, ship by hand, buy upgrades and answer events according to the
policy. Progress is printed per session and a numpy summary of endings and
final metrics is printed at the end. Session rows can be exported to SQLite.
"""

import argparse
import random
import sqlite3
import time
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from events import EventDefinition, choice_is_eligible
from simulation import Simulation
from state import EndingKind, SimulationState
from upgrades import UPGRADES, current_price, is_eligible

POLICIES = ("greedy", "ethical", "ruthless")


def choose_upgrade(state: SimulationState, policy: str) -> Optional[str]:
    """Pick the next upgrade to buy, or None to keep saving."""
    affordable = [
        u for u in UPGRADES
        if is_eligible(state, u) and current_price(state, u) <= state.currency
    ]
    if policy == "ethical":
        affordable = [u for u in affordable if u.ethics_delta >= 0]
        affordable.sort(key=lambda u: (-u.ethics_delta, current_price(state, u)))
    elif policy == "ruthless":
        affordable.sort(key=lambda u: (u.ethics_delta, current_price(state, u)))
    else:
        affordable.sort(key=lambda u: current_price(state, u))
    return affordable[0].upgrade_id if affordable else None


def choose_event_choice(event: EventDefinition, state: SimulationState, policy: str, rng: random.Random) -> str:
    options = [c for c in event.choices if choice_is_eligible(state, c)]
    if policy == "ethical":
        return max(options, key=lambda c: c.ethics_delta).choice_id
    if policy == "ruthless":
        return min(options, key=lambda c: c.ethics_delta).choice_id
    return rng.choice(options).choice_id


def play_session(
    seed: int,
    policy: str,
    duration_seconds: float = 3600.0,
    step_seconds: float = 1.0,
    ships_per_step: int = 2,
) -> Dict[str, object]:
    """
    Play one session and return its final metrics.

    Args:
        seed: Seed for the simulation's random source
        policy: One of POLICIES
        duration_seconds: Simulated play time
        step_seconds: Simulated seconds per tick
        ships_per_step: Manual shipments per tick
    """
    sim = Simulation(seed=seed, now=0.0)
    policy_rng = random.Random(seed + 1)
    ending_time: Optional[float] = None
    purchases = 0
    events_seen = 0

    now = 0.0
    while now < duration_seconds:
        now += step_seconds
        sim.advance_tick(now)
        if sim.check_for_event(now) is not None:
            events_seen += 1

        for _ in range(ships_per_step):
            sim.ship_package()

        active = sim.active_event()
        if active is not None:
            sim.resolve_event_choice(choose_event_choice(active, sim.state, policy, policy_rng), now)

        upgrade_id = choose_upgrade(sim.state, policy)
        if upgrade_id is not None and sim.purchase_upgrade(upgrade_id, now).ok:
            purchases += 1

        if ending_time is None and sim.state.ending_kind is not EndingKind.ONGOING:
            ending_time = now

    s = sim.state
    return {
        "seed": seed,
        "policy": policy,
        "ending": s.ending_kind.value,
        "ending_time": ending_time if ending_time is not None else -1.0,
        "units": s.total_units_produced,
        "currency": s.currency,
        "lifetime_currency": s.lifetime_currency_earned,
        "workers": s.worker_count,
        "ethics": s.ethics_score,
        "perception": s.public_perception,
        "environment": s.environmental_impact,
        "ethical_choices": s.ethical_choices_made,
        "purchases": purchases,
        "events": events_seen,
    }


def compute_session_stats(rows: List[Dict[str, object]]) -> Dict[str, float]:
    """Vectorized summary of final session metrics."""
    if not rows:
        return {
            "mean_units": 0.0,
            "median_units": 0.0,
            "mean_lifetime_currency": 0.0,
            "mean_ethics": 0.0,
            "std_ethics": 0.0,
            "mean_workers": 0.0,
            "mean_events": 0.0,
            "mean_ending_time": 0.0,
        }

    units = np.array([r["units"] for r in rows], dtype=float)
    lifetime = np.array([r["lifetime_currency"] for r in rows], dtype=float)
    ethics = np.array([r["ethics"] for r in rows], dtype=float)
    workers = np.array([r["workers"] for r in rows], dtype=float)
    events_seen = np.array([r["events"] for r in rows], dtype=float)
    ending_times = np.array([r["ending_time"] for r in rows if r["ending_time"] >= 0], dtype=float)

    return {
        "mean_units": float(units.mean()),
        "median_units": float(np.median(units)),
        "mean_lifetime_currency": float(lifetime.mean()),
        "mean_ethics": float(ethics.mean()),
        "std_ethics": float(ethics.std()),
        "mean_workers": float(workers.mean()),
        "mean_events": float(events_seen.mean()),
        "mean_ending_time": float(ending_times.mean()) if ending_times.size else 0.0,
    }


def ending_distribution(rows: List[Dict[str, object]]) -> Dict[str, float]:
    endings = np.array([r["ending"] for r in rows])
    if endings.size == 0:
        return {kind.value: 0.0 for kind in EndingKind}
    return {kind.value: float(np.mean(endings == kind.value)) for kind in EndingKind}


def init_database(db_path: str):
    """Initialize SQLite database with schema."""
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS sessions (
            seed INTEGER,
            policy TEXT,
            ending TEXT,
            ending_time REAL,
            units INTEGER,
            currency REAL,
            lifetime_currency REAL,
            workers INTEGER,
            ethics REAL,
            perception REAL,
            environment REAL,
            ethical_choices INTEGER,
            purchases INTEGER,
            events INTEGER,
            PRIMARY KEY (seed, policy)
        )
    """)
    conn.commit()
    conn.close()


def export_sessions(rows: List[Dict[str, object]], conn: sqlite3.Connection):
    """Export session rows using an open database connection."""
    cursor = conn.cursor()
    cursor.executemany("""
        INSERT OR REPLACE INTO sessions (
            seed, policy, ending, ending_time, units, currency, lifetime_currency,
            workers, ethics, perception, environment, ethical_choices, purchases, events
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, [
        (
            r["seed"], r["policy"], r["ending"], r["ending_time"], r["units"], r["currency"],
            r["lifetime_currency"], r["workers"], r["ethics"], r["perception"], r["environment"],
            r["ethical_choices"], r["purchases"], r["events"],
        )
        for r in rows
    ])
    conn.commit()


def main(
    num_sessions: int = 20,
    policy: str = "greedy",
    duration_seconds: float = 3600.0,
    step_seconds: float = 1.0,
    ships_per_step: int = 2,
    base_seed: int = 0,
    output_tag: Optional[str] = None,
    output_dir: Path = Path("."),
):
    print("=" * 80)
    print(f"Running {num_sessions} sessions | policy={policy} | {duration_seconds:.0f}s simulated each")
    print("=" * 80)
    print()
    print("Session |  Time(s) |   Ending | Units   |   Lifetime $ | Ethics | Workers")
    print("-" * 80)

    rows = []
    start_time = time.time()
    for i in range(num_sessions):
        session_start = time.time()
        row = play_session(base_seed + i, policy, duration_seconds, step_seconds, ships_per_step)
        rows.append(row)
        print(f"{i:7d} | {time.time() - session_start:8.2f} | {row['ending']:>8s} | {row['units']:7d} | "
              f"{row['lifetime_currency']:12,.0f} | {row['ethics']:6.1f} | {row['workers']:7d}")

    total_time = time.time() - start_time
    print()
    print(f"Total time: {total_time:.2f} seconds ({total_time / max(num_sessions, 1):.2f}s per session)")
    print()

    stats = compute_session_stats(rows)
    print("ENDINGS:")
    for ending, share in ending_distribution(rows).items():
        print(f"  {ending:10s} {share * 100:6.1f}%")
    print()
    print("FINAL METRICS:")
    for key, value in stats.items():
        print(f"  {key:24s} {value:14,.2f}")
    print()

    if output_tag:
        db_path = output_dir / f"collapse_sim_{output_tag}.db"
        if db_path.exists():
            db_path.unlink()
            print(f"Removed existing database: {db_path}")
        init_database(str(db_path))
        conn = sqlite3.connect(str(db_path))
        try:
            export_sessions(rows, conn)
        finally:
            conn.close()
        print(f"  Database:  {db_path}")

    return rows


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run scripted play sessions.")
    parser.add_argument("--sessions", type=int, default=20, help="Number of sessions")
    parser.add_argument("--policy", choices=POLICIES, default="greedy", help="Scripted player policy")
    parser.add_argument("--duration", type=float, default=3600.0, help="Simulated seconds per session")
    parser.add_argument("--step", type=float, default=1.0, help="Simulated seconds per tick")
    parser.add_argument("--ships-per-step", type=int, default=2, help="Manual shipments per tick")
    parser.add_argument("--seed", type=int, default=0, help="Seed of the first session")
    parser.add_argument("--tag", type=str, default=None, help="Export sessions to collapse_sim_<tag>.db")
    parser.add_argument(
        "--small",
        action="store_true",
        help="Shortcut for a 5-session, 10-minute diagnostic run"
    )
    args = parser.parse_args()

    if args.small:
        args.sessions = 5
        args.duration = 600.0

    main(
        num_sessions=args.sessions,
        policy=args.policy,
        duration_seconds=args.duration,
        step_seconds=args.step,
        ships_per_step=args.ships_per_step,
        base_seed=args.seed,
        output_tag=args.tag,
    )
