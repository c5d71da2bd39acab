"""Adapters for the remote modpack catalog."""

from .http_client import HttpConfig, RetryingSession
from .yandex_disk import YandexDiskCatalog

__all__ = ["HttpConfig", "RetryingSession", "YandexDiskCatalog"]
