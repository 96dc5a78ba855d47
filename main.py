"""
ASGI entrypoint for deployments (e.g. Render).

The FastAPI app lives in `backend/estates/main.py` and uses imports like
`from estates.db ...`, which requires `backend/` to be on `PYTHONPATH`.

With this repo-root `main.py` the platform can run:
  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

from __future__ import annotations

import sys
from pathlib import Path


_ROOT = Path(__file__).resolve().parent
_BACKEND_DIR = _ROOT / "backend"

# Ensure `import estates...` resolves to `backend/estates/...`
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from estates.main import app  # noqa: E402,F401
