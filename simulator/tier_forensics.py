#!/usr/bin/env python3
"""
Tier Forensic Analysis Script

Reads a simulation's event database and verifies:
1. Every tier shrank the idea pool until one idea remained
2. Delegate weight was conserved where the policy requires it
3. Cells completed with the expected number of votes
"""

import sqlite3
import json
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional


def connect_db(sim_id: str, db_dir: Optional[Path] = None) -> sqlite3.Connection:
    """Connect to simulation database."""
    db_dir = db_dir or Path(__file__).parent / "db"
    db_path = db_dir / f"{sim_id}.sqlite3"
    if not db_path.exists():
        print(f"Error: database not found: {db_path}")
        sys.exit(1)
    return sqlite3.connect(str(db_path))


def get_events(conn: sqlite3.Connection, event_type: str) -> List[dict]:
    """All events of one type, oldest first, with decoded payloads."""
    cursor = conn.cursor()
    cursor.execute(
        """
        SELECT tier, cell_id, participant_id, payload, message
        FROM events
        WHERE event_type = ?
        ORDER BY id
    """,
        (event_type,),
    )
    events = []
    for tier, cell_id, participant_id, payload, message in cursor.fetchall():
        events.append(
            {
                "tier": tier,
                "cell_id": cell_id,
                "participant_id": participant_id,
                "payload": json.loads(payload) if payload else {},
                "message": message,
            }
        )
    return events


def get_event_counts(conn: sqlite3.Connection) -> Dict[str, int]:
    cursor = conn.cursor()
    cursor.execute("SELECT event_type, COUNT(*) FROM events GROUP BY event_type")
    return dict(cursor.fetchall())


def tier_table(conn: sqlite3.Connection) -> List[dict]:
    """One row per formed tier: shape, votes and the batch winners it produced."""
    rows = []
    index = {}
    for event in get_events(conn, "tier_formed"):
        payload = event["payload"]
        key = (payload.get("challenge_round", 0), event["tier"])
        row = {
            "challenge_round": key[0],
            "tier": event["tier"],
            "mode": payload.get("mode"),
            "cells": payload.get("cells"),
            "members": payload.get("members"),
            "ideas": payload.get("ideas"),
            "winners": [],
            "votes": 0,
            "auto_votes": 0,
        }
        index[key] = row
        rows.append(row)

    # Batch winners and votes carry no round, so attribute them to the latest
    # formed tier with a matching number.
    latest = {}
    for row in rows:
        latest[row["tier"]] = row
    for event in get_events(conn, "batch_winner"):
        row = latest.get(event["tier"])
        if row is not None:
            row["winners"].append(event["payload"].get("idea_id"))
    vote_counts = defaultdict(int)
    for event in get_events(conn, "vote_cast"):
        vote_counts[event["tier"]] += 1
    auto_counts = defaultdict(int)
    for event in get_events(conn, "auto_vote"):
        auto_counts[event["tier"]] += 1
    for tier, row in latest.items():
        row["votes"] = vote_counts[tier]
        row["auto_votes"] = auto_counts[tier]
    return rows


def find_pool_problems(rows: List[dict]) -> List[str]:
    """Tiers whose winner count did not shrink below their idea count."""
    problems = []
    for row in rows:
        if row["winners"] and row["ideas"] and len(row["winners"]) >= row["ideas"] and row["ideas"] > 1:
            problems.append(
                f"round {row['challenge_round']} tier {row['tier']}: "
                f"{len(row['winners'])} winners from {row['ideas']} ideas"
            )
    return problems


def find_weight_breaks(conn: sqlite3.Connection) -> List[str]:
    """Delegation summaries whose represented weight differs from the expected one."""
    breaks = []
    for event in get_events(conn, "delegation_summary"):
        payload = event["payload"]
        expected = payload.get("expected_weight")
        represented = payload.get("represented_weight")
        if expected is not None and represented != expected:
            breaks.append(f"tier {event['tier']}: {represented} represented, {expected} expected")
    return breaks


def analyze_tiers(conn: sqlite3.Connection):
    print("\n" + "=" * 80)
    print("TIER PROGRESSION")
    print("=" * 80)
    rows = tier_table(conn)
    print(f"{'Round':>5} {'Tier':>4} {'Mode':10} {'Cells':>6} {'Members':>8} {'Ideas':>6} {'Winners':>8} {'Votes':>6} {'Auto':>5}")
    for row in rows:
        print(
            f"{row['challenge_round']:>5} {row['tier']:>4} {row['mode'] or '-':10} "
            f"{row['cells']:>6} {row['members']:>8} {row['ideas']:>6} "
            f"{len(row['winners']):>8} {row['votes']:>6} {row['auto_votes']:>5}"
        )
    return rows


def analyze_delegation(conn: sqlite3.Connection):
    summaries = get_events(conn, "delegation_summary")
    if not summaries:
        return
    print("\n" + "=" * 80)
    print("DELEGATION")
    print("=" * 80)
    for event in summaries:
        payload = event["payload"]
        print(
            f"Tier {event['tier']}: {payload.get('delegates')} delegates representing "
            f"{payload.get('represented_weight')} (expected {payload.get('expected_weight')}, "
            f"policy {payload.get('policy')})"
        )
    for event in get_events(conn, "delegation_fallback"):
        print(f"⚠️  {event['message']}")


def analyze_consensus(conn: sqlite3.Connection):
    print("\n" + "=" * 80)
    print("CONSENSUS")
    print("=" * 80)
    for event in get_events(conn, "consensus_reached"):
        payload = event["payload"]
        print(
            f"Round {payload.get('challenge_round', 0)}: {payload.get('winner')} "
            f"with {payload.get('score')} pts at tier {event['tier']}"
        )
    for event in get_events(conn, "challenge_triggered"):
        print(f"Challenge: {event['message']}")


def main():
    if len(sys.argv) != 2:
        print("Usage: python3 tier_forensics.py <simulation_id>")
        sys.exit(1)

    sim_id = sys.argv[1]
    print(f"TIER FORENSIC ANALYSIS - Simulation: {sim_id}")
    print("=" * 80)

    conn = connect_db(sim_id)
    try:
        rows = analyze_tiers(conn)
        if not rows:
            print("❌ No tiers found in database")
            return
        analyze_delegation(conn)
        analyze_consensus(conn)

        print("\n" + "=" * 80)
        print("EVENT COUNTS")
        print("=" * 80)
        for event_type, count in sorted(get_event_counts(conn).items()):
            print(f"{event_type:25} {count:6} events")

        problems = find_pool_problems(rows) + find_weight_breaks(conn)
        violations = get_events(conn, "invariant_violation")
        print("\n" + "=" * 80)
        if problems or violations:
            print("❌ FINDINGS")
            for problem in problems:
                print(f"   • {problem}")
            for event in violations:
                print(f"   • {event['message']}")
        else:
            print(f"✅ Forensic analysis clean for simulation {sim_id}")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
