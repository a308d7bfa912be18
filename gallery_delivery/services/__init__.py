"""
Business logic services for gallery delivery.
"""

from gallery_delivery.services.archive_assembler import ArchiveAssembler
from gallery_delivery.services.download_orchestrator import DownloadOrchestrator
from gallery_delivery.services.source_router import SourceRouter
from gallery_delivery.services.token_manager import TokenCacheManager
from gallery_delivery.services.volume_planner import plan_favorites, plan_volumes

__all__ = [
    "ArchiveAssembler",
    "DownloadOrchestrator",
    "SourceRouter",
    "TokenCacheManager",
    "plan_favorites",
    "plan_volumes",
]
