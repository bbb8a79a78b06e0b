"""
Updates Module

Image update detection for running containers.

Architecture:
- ImageUpdateChecker: Orchestrates cache, local inspection and registry queries
- UpdateCache: TTL cache of results plus in-flight check registry
- DockerSDKEngine: Docker Engine collaborator over the docker SDK
"""

from updates.cache import UpdateCache, get_update_cache
from updates.engine import DockerEngine, DockerSDKEngine, EngineError
from updates.types import CachedUpdate, ImageUpdateInfo, UpdateStatus, VersionStatus
from updates.update_checker import ImageUpdateChecker

__all__ = [
    'ImageUpdateChecker',
    'UpdateCache',
    'get_update_cache',
    'DockerEngine',
    'DockerSDKEngine',
    'EngineError',
    'CachedUpdate',
    'ImageUpdateInfo',
    'UpdateStatus',
    'VersionStatus',
]
