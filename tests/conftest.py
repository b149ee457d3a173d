from __future__ import annotations

import os
import tempfile

# Settings are read at import time, so the environment must be set first.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{tempfile.gettempdir()}/cvforge-test-{os.getpid()}.db",
)
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
