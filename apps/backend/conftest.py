from __future__ import annotations

import sys
from pathlib import Path


def pytest_configure() -> None:
    """
    Ensure the backend package is importable regardless of pytest rootdir selection.

    - `import devteam...` expects `/apps/backend` on sys.path
    """
    backend_root = Path(__file__).resolve().parent

    if str(backend_root) not in sys.path:
        sys.path.insert(0, str(backend_root))
