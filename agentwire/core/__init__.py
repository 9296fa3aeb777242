"""Core building blocks for agentwire: config, detection, persistence and logging."""

from agentwire.core.config import SetupConfig, load_config
from agentwire.core.detection import DetectionReport, SystemDetector, VersionTracker
from agentwire.core.memory import MemoryGraph, MemoryNode, MemoryEdge, MemorySnapshot
from agentwire.core.observability import ObservabilityLogger, LogEntry

__all__ = [
    # Config
    "SetupConfig",
    "load_config",
    # Detection
    "DetectionReport",
    "SystemDetector",
    "VersionTracker",
    # Memory
    "MemoryGraph",
    "MemoryNode",
    "MemoryEdge",
    "MemorySnapshot",
    # Observability
    "ObservabilityLogger",
    "LogEntry",
]
