"""gh-notifier: desktop alerts for new GitHub notifications.

Polls the notifications feed, presents threads updated since the last
successful poll, and opens the clicked thread in a browser.
"""

__version__ = "0.1.0"

from gh_notifier.models import Item, Reason, Repository, Subject
from gh_notifier.watermark import WatermarkStore
from gh_notifier.engine import NotifierEngine, CycleResult, DispatchRecord, DispatchStatus
from gh_notifier.config import load_config, NotifierConfig, ConfigError
from gh_notifier.factory import build_engine

__all__ = [
    "Item",
    "Reason",
    "Repository",
    "Subject",
    "WatermarkStore",
    "NotifierEngine",
    "CycleResult",
    "DispatchRecord",
    "DispatchStatus",
    "load_config",
    "NotifierConfig",
    "ConfigError",
    "build_engine",
]
