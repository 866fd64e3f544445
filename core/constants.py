"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
System-wide constants for the lifecycle engine.

- Policy priority bounds
- Month/day conversion used by age conditions
- Built-in threshold profile catalogue
- Housekeeping retention defaults

============================================================
"""

from typing import Dict, Tuple


# ============================================================
# SYSTEM CONSTANTS
# ============================================================

SYSTEM_NAME = "lifecycle-tiering-engine"
SYSTEM_VERSION = "1.0.0"

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

# Age conditions expressed in months compare against days // 30
DAYS_PER_MONTH = 30


# ============================================================
# POLICY CONSTANTS
# ============================================================

PRIORITY_MIN = 1
PRIORITY_MAX = 999
DEFAULT_PRIORITY = 100


# ============================================================
# THRESHOLD PROFILES
# ============================================================

DEFAULT_PROFILE_NAME = "DEFAULT"

# name -> (hot_days, warm_days, cold_days, description)
BUILTIN_PROFILES: Dict[str, Tuple[int, int, int, str]] = {
    "DEFAULT": (90, 365, 1095, "Standard aging: 3 months hot, 1 year warm, 3 years cold"),
    "FAST_AGING": (30, 90, 180, "Short-lived operational data"),
    "SLOW_AGING": (180, 730, 1825, "Reference data queried for years"),
    "AGGRESSIVE_ARCHIVE": (14, 30, 90, "Staging and scratch data"),
}


# ============================================================
# HOUSEKEEPING
# ============================================================

QUEUE_RETENTION_DAYS = 7
LOG_RETENTION_DAYS = 365

# Access tracking treats a partition with no recorded access as this old
NEVER_ACCESSED_DAYS = 10000
