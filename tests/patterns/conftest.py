import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from agent_patterns import reset_metrics_collector  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Each test starts with an empty metrics collector."""
    reset_metrics_collector()
    yield
