from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.core.config import Settings
from image_compression import CompressionService, RetentionSweeper, UploadValidator


@dataclass
class ServiceContainer:
    settings: Settings
    compression_service: CompressionService
    sweeper: RetentionSweeper
    validator: UploadValidator


_container: Optional[ServiceContainer] = None


def set_container(container: ServiceContainer) -> None:
    global _container
    _container = container


def get_container() -> ServiceContainer:
    if _container is None:
        raise RuntimeError("Services not initialized")
    return _container


def get_settings_dependency() -> Settings:
    return get_container().settings


def get_compression_service() -> CompressionService:
    return get_container().compression_service


def get_sweeper() -> RetentionSweeper:
    return get_container().sweeper


def get_validator() -> UploadValidator:
    return get_container().validator
