"""
SystemInfoProvider Class - Host/runtime environment snapshot
"""

import locale
import logging
import platform
import shutil
from datetime import datetime
from typing import Mapping, Optional

import psutil
from dateutil import tz

from diagnostics_engine.models.data_models import MemoryUsage, StorageUsage, SystemInfo

logger = logging.getLogger(__name__)


class SystemInfoProvider:
    """
    Produces a fresh SystemInfo on every call; nothing is cached.
    Storage areas are key/value mappings owned by the host application.
    """

    def __init__(
        self,
        app_version: str = "unknown",
        local_storage: Optional[Mapping[str, str]] = None,
        session_storage: Optional[Mapping[str, str]] = None,
    ):
        self.app_version = app_version
        self.local_storage = local_storage if local_storage is not None else {}
        self.session_storage = session_storage if session_storage is not None else {}

    def get_system_info(self) -> SystemInfo:
        return SystemInfo(
            app_version=self.app_version,
            user_agent=self._user_agent(),
            platform=platform.platform(),
            language=self._language(),
            screen_resolution=self._screen_resolution(),
            time_zone=self._time_zone(),
            storage_usage=StorageUsage(
                local=estimate_storage_size(self.local_storage, "local"),
                session=estimate_storage_size(self.session_storage, "session"),
            ),
            memory_usage=self._memory_usage(),
        )

    @staticmethod
    def _user_agent() -> str:
        return (
            f"python/{platform.python_version()} "
            f"({platform.system()} {platform.release()}; {platform.python_implementation()})"
        )

    @staticmethod
    def _language() -> str:
        lang, _ = locale.getlocale()
        return lang or "unknown"

    @staticmethod
    def _screen_resolution() -> str:
        size = shutil.get_terminal_size()
        return f"{size.columns}x{size.lines}"

    @staticmethod
    def _time_zone() -> str:
        return tz.tzlocal().tzname(datetime.now()) or "UTC"

    @staticmethod
    def _memory_usage() -> Optional[MemoryUsage]:
        try:
            info = psutil.Process().memory_info()
            total = psutil.virtual_memory().total
        except (psutil.Error, OSError):
            return None
        return MemoryUsage(rss=info.rss, vms=info.vms, total_system=total)


def estimate_storage_size(storage: Mapping[str, str], name: str = "storage") -> int:
    """Sum of key and value lengths, doubled for two bytes per character"""
    try:
        total = sum(len(str(k)) + len(str(v)) for k, v in storage.items())
    except Exception:
        logger.exception("Failed to estimate %s size", name)
        return 0
    return total * 2
