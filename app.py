#!/usr/bin/env python3
"""
Lifecycle Tiering Engine - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the engine.

- Compatible with PM2 process management
- Can be started, stopped, and restarted safely
- Handles SIGINT/SIGTERM gracefully (in-flight actions finish)

============================================================
USAGE
============================================================
Direct execution:
    python app.py --mode run

One-shot passes:
    python app.py --mode evaluate --dataset sales
    python app.py --mode execute --max-operations 5

With PM2:
    pm2 start app.py --interpreter python --name lifecycle-engine -- --mode run

Environment-based configuration (see execution_engine/config.py):
    LIFECYCLE_WINDOW_START=22:00 LIFECYCLE_WINDOW_END=06:00 python app.py

============================================================
"""

import sys

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
