import os
import sys
from pathlib import Path

import pytest

# PEP 604 unions and ParamSpec are used throughout src/
if sys.version_info < (3, 10):
    print(
        f"ERROR: postgres-mcp requires Python 3.10+ (found {sys.version.split()[0]}).",
        file=sys.stderr,
    )
    sys.exit(1)


SRC_DIR = Path(__file__).parent.absolute() / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def _integration_skip_reason():
    if os.getenv("RUN_INTEGRATION_TESTS", "0") != "1":
        return "Skipping integration tests (set RUN_INTEGRATION_TESTS=1 to run)"
    if not os.getenv("POSTGRES_SERVERS"):
        return "Integration tests need a live server in POSTGRES_SERVERS"
    return None


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless a live PostgreSQL server is configured."""
    reason = _integration_skip_reason()
    if reason is None:
        return

    skip_integration = pytest.mark.skip(reason=reason)
    integration_dir = f"{os.sep}tests{os.sep}integration{os.sep}"
    for item in items:
        if integration_dir in str(item.fspath) or item.get_closest_marker("integration"):
            item.add_marker(skip_integration)
