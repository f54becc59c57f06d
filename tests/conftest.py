"""Pytest configuration shared by all tests.

Ensures the project root is importable when the package is not installed.
"""

import sys
from pathlib import Path

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))
