"""Durable per-platform dispatch: queues, workers and destination adapters."""

from leadsignal.services.dispatch.base import DeliveryResult, PlatformDispatcher
from leadsignal.services.dispatch.google_ads import GoogleAdsClient, GoogleAdsDispatcher
from leadsignal.services.dispatch.meta_capi import MetaCapiClient, MetaCapiDispatcher
from leadsignal.services.dispatch.queue import RedisDispatchQueue
from leadsignal.services.dispatch.token_cache import TokenCache
from leadsignal.services.dispatch.worker import AttemptState, DispatchWorker

__all__ = [
    "AttemptState",
    "DeliveryResult",
    "DispatchWorker",
    "GoogleAdsClient",
    "GoogleAdsDispatcher",
    "MetaCapiClient",
    "MetaCapiDispatcher",
    "PlatformDispatcher",
    "RedisDispatchQueue",
    "TokenCache",
]
