"""Preflight check for the service environment.

The tool performs two main checks:

1. It loads ``AppSettings`` from the provided ``.env`` file, surfacing missing
   or malformed configuration (for example an absent ``HOST_URL``) before the
   service refuses to start, and lists settings that start but degrade the
   service: no identity provider, a random service token, or missing key files
   that will be regenerated and thereby invalidate issued access tokens.
2. It can record and verify a checksum for the ``.env`` file so unexpected
   edits are detected.

Example usages::

    python -m scripts.check_env check --env-file /srv/authbridge/.env

    python -m scripts.check_env record --env-file /srv/authbridge/.env \
        --hash-file /srv/authbridge/.env.sha256

    python -m scripts.check_env verify --env-file /srv/authbridge/.env \
        --hash-file /srv/authbridge/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from authbridge.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5


def _compute_hash(env_file: Path) -> str:
    """Return the SHA256 checksum for the target environment file."""
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    """Load settings the way the service does, seeded from ``env_file``."""
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _collect_warnings(settings: AppSettings) -> list[str]:
    warnings: list[str] = []
    if not settings.discord.configured:
        warnings.append("No identity provider configured; logins will be rejected.")
    if settings.security.service_token is None:
        warnings.append("SERVICE_TOKEN unset; a random token is used on each start.")
    for path in (settings.security.private_key_path, settings.security.public_key_path):
        if not Path(path).exists():
            warnings.append(
                f"Key file {path} missing; a new key pair will be generated and "
                "outstanding access tokens become invalid."
            )
    return warnings


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    """Persist the current checksum to ``hash_file``."""
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    """Compare the current checksum to the recorded baseline."""
    if not hash_file.exists():
        print(
            f"Expected checksum file {hash_file} is missing. "
            "Re-run with the 'record' command to establish a baseline.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate service settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common_arguments(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )

    for command, help_text in (
        ("record", "Validate settings and store the checksum baseline."),
        ("verify", "Validate settings and compare the checksum with the baseline."),
    ):
        subparser = subparsers.add_parser(command, help=help_text)
        add_common_arguments(subparser)
        subparser.add_argument("--hash-file", required=True, type=Path)

    check_parser = subparsers.add_parser(
        "check",
        help="Validate settings without touching any checksum files.",
    )
    add_common_arguments(check_parser)
    check_parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat degraded-configuration warnings as failures.",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    warnings = _collect_warnings(settings)
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)

    command: str = args.command
    handlers: dict[str, Callable[[], int]] = {
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
        "check": lambda: EXIT_VALIDATION_ERROR if args.strict and warnings else EXIT_OK,
    }
    return handlers[command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
