"""
Root conftest.py - put the repo root on sys.path before test collection.

The bot's modules (agent_platform, caption_bot) and namespace packages
(agents, clients, services, slack_bot) are imported by their top-level names,
so tests run from any directory without an install.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))
