"""
Core application modules.
Contains configuration, logging, metrics, tracing and resilience helpers.
"""
from .config import OrchestratorSettings, load_settings

__all__ = ["OrchestratorSettings", "load_settings"]
