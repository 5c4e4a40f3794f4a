"""Run the directory sync CLI from a source checkout.

    python scripts/directory_sync.py drain --limit 50
    python scripts/directory_sync.py list --status failed

Installed environments get the same commands as ``lms-admin-sync``.
"""
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lms_admin.cli import main

if __name__ == "__main__":
    sys.exit(main())
