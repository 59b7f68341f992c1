"""
Wires the database, storage buckets and services for one configuration.
"""

import logging
import time
from typing import Callable, Dict

from setup_tool.provider_factory import BucketSet
from shared.config import HubConfig
from shared.constants import ALL_BUCKETS
from shared.database import DatabaseManager
from shared.notifications import DownloadNotificationCenter

from .auth_service import AuthService
from .avatar_service import AvatarService
from .download_service import DownloadService
from .track_service import TrackService
from .user_service import UserService

logger = logging.getLogger(__name__)


class HubCore:
    def __init__(self, config: HubConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self.db = DatabaseManager(config.database_path)
        self.buckets = BucketSet(config)
        self.auth = AuthService(self.db, config, clock=clock)
        self.avatars = AvatarService(self.db, self.buckets, clock=clock)
        self.tracks = TrackService(self.db, self.buckets, clock=clock)
        self.downloads = DownloadService(self.db)
        self.users = UserService(self.db)
        self.notifications = DownloadNotificationCenter(clock=clock)

    def init_storage(self) -> Dict[str, str]:
        """Open (creating if needed) every bucket; returns bucket -> physical name."""
        opened = {}
        for bucket in ALL_BUCKETS:
            provider = self.buckets.get(bucket)
            opened[bucket] = provider.bucket_name
            logger.info(f"Bucket listo: {provider.bucket_name}")
        return opened

    def status(self) -> Dict[str, int]:
        return self.db.get_stats()
