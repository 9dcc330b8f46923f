from functools import lru_cache

from docguard.config import settings
from docguard.database import SessionLocal
from docguard.services.reliability_service import ReliabilityService


@lru_cache
def get_reliability_service() -> ReliabilityService:
    return ReliabilityService(settings, SessionLocal)
