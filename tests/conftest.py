from __future__ import annotations

import os

# Keep test runs from writing per-run log files
os.environ.setdefault("CHATDIRECTOR_LOG_TO_FILE", "0")
