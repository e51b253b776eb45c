#!/usr/bin/env python3
"""Move the Plaid client id and secret from .env into the system keychain.

Reads the backend ``.env`` file, stores each non-empty Plaid credential via
``keyring`` and prints what happened.  ``--clean`` then strips the stored
lines from ``.env``; other settings and comments stay.

Usage:
    python -m scripts.migrate_env_to_keychain
    python -m scripts.migrate_env_to_keychain --clean
"""

import argparse
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import dotenv_values

from services.credential_manager import CREDENTIAL_KEYS, get_credential, set_credential


@dataclass
class MigrationSummary:
    stored: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def in_keychain(self) -> list[str]:
        return self.stored + self.unchanged


def migrate(env_path: Path, *, clean: bool = False) -> MigrationSummary:
    """Copy credentials from ``env_path`` into the keychain.

    Args:
        env_path: The ``.env`` file to read.
        clean: Remove every credential that is now in the keychain from
            the file afterwards.
    """
    if not env_path.exists():
        print(f"No .env file found at {env_path}")
        sys.exit(1)

    values = dotenv_values(env_path)
    summary = MigrationSummary()
    for key in sorted(CREDENTIAL_KEYS):
        value = values.get(key)
        if not value:
            summary.missing.append(key)
        elif get_credential(key) == value:
            summary.unchanged.append(key)
        elif set_credential(key, value):
            summary.stored.append(key)
        else:
            summary.failed.append(key)

    _print_summary(summary)

    if clean:
        if summary.in_keychain:
            _clean_env_file(env_path, summary.in_keychain)
        else:
            print("Nothing to clean from .env.")
    return summary


def _print_summary(summary: MigrationSummary) -> None:
    print()
    print("Plaid credential migration")
    print("-" * 40)
    for title, marker, keys in (
        ("Stored in keychain", "+", summary.stored),
        ("Already in keychain", "=", summary.unchanged),
        ("Not set in .env", "-", summary.missing),
        ("Failed", "!", summary.failed),
    ):
        if keys:
            print(f"\n  {title} ({len(keys)}):")
            for key in keys:
                print(f"    {marker} {key}")
    print()


def _clean_env_file(env_path: Path, keys: list[str]) -> None:
    """Drop ``KEY=...`` lines for ``keys`` from the file."""
    pattern = re.compile(r"^(" + "|".join(re.escape(k) for k in keys) + r")\s*=")
    lines = env_path.read_text().splitlines(keepends=True)
    env_path.write_text("".join(line for line in lines if not pattern.match(line)))
    print(f"Removed {len(keys)} credential(s) from {env_path}")


def main():
    parser = argparse.ArgumentParser(description="Move Plaid credentials from .env to the keychain")
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Remove the credentials from .env once they are in the keychain",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(__file__).parent.parent / ".env",
        help="Path to .env file (default: backend/.env)",
    )
    args = parser.parse_args()
    migrate(args.env_file, clean=args.clean)


if __name__ == "__main__":
    main()
