from __future__ import annotations

import os

# web_api builds a module-level app on import; keep it off the working tree.
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("APP_ENV", "testing")
