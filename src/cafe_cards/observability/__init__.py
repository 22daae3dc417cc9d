"""In-process telemetry stores."""

from .scanning import ScanObservabilityStore, ScanSnapshot, get_scan_store  # noqa: F401
