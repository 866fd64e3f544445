"""
Dashboard API Routers.
"""
from . import controls, executions, health, policies, thresholds

__all__ = ["controls", "executions", "health", "policies", "thresholds"]
