"""Staff scanning orchestration."""

from .activity_log import ActivityStatus, ScanActivity, ScanActivityLog  # noqa: F401
from .flow import ScanOutcome, ScanResult, ScanState, StampIssuanceFlow  # noqa: F401
