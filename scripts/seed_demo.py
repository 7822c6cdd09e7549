#!/usr/bin/env python3
"""Seed demo accounts into TutorHub.

Usage:
    python scripts/seed_demo.py                                   # default local server
    python scripts/seed_demo.py --base-url http://localhost:8400  # against running server
"""

from __future__ import annotations

import argparse
import sys

from tutor_hub.cli.client import TutorClient

DEMO_PASSWORD = "tutorhub-demo"

ACCOUNTS = [
    {
        "email": "admin@tutorhub.test",
        "full_name": "Ada Admin",
        "role": "admin",
    },
    {
        "email": "maths.teacher@tutorhub.test",
        "full_name": "Grace Numbers",
        "role": "teacher",
        "bio": "Secondary maths and further maths, exam preparation",
        "location": "London",
    },
    {
        "email": "physics.teacher@tutorhub.test",
        "full_name": "Niels Quantum",
        "role": "teacher",
        "bio": "A-level physics with a focus on mechanics",
        "location": "Manchester",
    },
    {
        "email": "student@tutorhub.test",
        "full_name": "Sam Student",
        "role": "student",
        "school_name": "Riverside Academy",
        "interests": ["maths", "physics"],
    },
    {
        "email": "parent@tutorhub.test",
        "full_name": "Pat Parent",
        "role": "parent",
    },
]


def seed_via_api(base_url: str) -> int:
    """Create demo accounts through the sign-up endpoint. Returns the failure count."""
    client = TutorClient(base_url=base_url)
    failures = 0
    for account in ACCOUNTS:
        payload = {"password": DEMO_PASSWORD, **account}
        try:
            created = client.sign_up(payload)
        except RuntimeError as e:
            if "(409)" in str(e):
                print(f"  Skipped (exists): {account['email']}")
                continue
            print(f"  FAILED {account['email']}: {e}", file=sys.stderr)
            failures += 1
            continue
        print(f"  Created {account['role']}: {account['email']} ({created['user_id']})")
    return failures


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo accounts into TutorHub")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8400",
        help="TutorHub API base URL (default: http://localhost:8400)",
    )
    args = parser.parse_args()

    print(f"Seeding {len(ACCOUNTS)} accounts to {args.base_url} ...")
    failures = seed_via_api(args.base_url)
    print("Done." if not failures else f"Done with {failures} failure(s).")
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
