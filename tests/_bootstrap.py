"""Test helper that normalizes sys.path and environment defaults."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

_STATE_DIR = Path(tempfile.mkdtemp(prefix="authbridge-tests-"))

_DEFAULT_ENV_VARS: dict[str, str] = {
    "HOST_URL": "https://api.example.com",
    "CLIENT_URL": "https://client.example",
    "ALLOWED_HOSTS": "https://client.example/auth/,https://partner.example/login",
    "DISCORD_CLIENT_ID": "test-client-id",
    "DISCORD_CLIENT_SECRET": "test-client-secret",
    "SERVICE_TOKEN": "c2VydmljZS1zZWNyZXQ=",
    "TOKEN_ENCRYPTION_SECRET": "test-secret",
    "PRIVATE_KEY_PATH": str(_STATE_DIR / "private.key"),
    "PUBLIC_KEY_PATH": str(_STATE_DIR / "public.key"),
    "DATABASE_PATH": str(_STATE_DIR / "authbridge.db"),
}

for key, value in _DEFAULT_ENV_VARS.items():
    os.environ.setdefault(key, value)
