"""Storefront registry: lookup by id or by page URL."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shop_agent.errors import PlatformNotFoundError
from shop_agent.platforms.amazon import AmazonPlatform
from shop_agent.platforms.base import StorefrontPlatform, host_matches
from shop_agent.platforms.ebay import EbayPlatform
from shop_agent.platforms.flipkart import FlipkartPlatform
from shop_agent.platforms.walmart import WalmartPlatform

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlatformDescriptor:
    """Immutable registration record for one storefront."""

    id: str
    domains: tuple[str, ...]
    capabilities: StorefrontPlatform
    home_url: str
    confirmation_markers: tuple[str, ...] = ()

    @classmethod
    def for_platform(cls, platform: StorefrontPlatform) -> "PlatformDescriptor":
        return cls(
            id=platform.platform_id,
            domains=tuple(platform.domains),
            capabilities=platform,
            home_url=platform.home_url,
            confirmation_markers=tuple(platform.confirmation_markers),
        )

    def matches(self, url: str) -> bool:
        return host_matches(url, self.domains)

    def is_confirmation_url(self, url: str) -> bool:
        lowered = url.lower()
        return any(marker in lowered for marker in self.confirmation_markers)


class PlatformRegistry:
    """Stores platform descriptors in registration order.

    `resolve_by_url` returns the first registered descriptor whose domains
    match the URL. Registration order is the tie-breaker when domains
    overlap, and callers may rely on it.
    """

    def __init__(self) -> None:
        self._platforms: dict[str, PlatformDescriptor] = {}

    def register(self, descriptor: PlatformDescriptor) -> None:
        if descriptor.id in self._platforms:
            raise ValueError(f"Platform already registered: {descriptor.id}")
        if not descriptor.domains:
            raise ValueError(f"Platform {descriptor.id} must have at least one domain")
        self._platforms[descriptor.id] = descriptor
        logger.info("Platform registered: %s", descriptor.id)

    def register_platform(self, platform: StorefrontPlatform) -> PlatformDescriptor:
        descriptor = PlatformDescriptor.for_platform(platform)
        self.register(descriptor)
        return descriptor

    def descriptor(self, platform_id: str) -> PlatformDescriptor:
        descriptor = self._platforms.get(platform_id)
        if descriptor is None:
            raise PlatformNotFoundError(platform_id)
        return descriptor

    def get(self, platform_id: str) -> StorefrontPlatform:
        return self.descriptor(platform_id).capabilities

    def resolve_descriptor_by_url(self, url: str) -> PlatformDescriptor | None:
        for descriptor in self._platforms.values():
            if descriptor.matches(url):
                return descriptor
        return None

    def resolve_by_url(self, url: str) -> StorefrontPlatform | None:
        descriptor = self.resolve_descriptor_by_url(url)
        return descriptor.capabilities if descriptor is not None else None

    def ids(self) -> list[str]:
        return list(self._platforms)

    def descriptors(self) -> list[PlatformDescriptor]:
        return list(self._platforms.values())

    def all(self) -> list[StorefrontPlatform]:
        return [descriptor.capabilities for descriptor in self._platforms.values()]

    def __contains__(self, platform_id: object) -> bool:
        return platform_id in self._platforms


def register_builtin_platforms(registry: PlatformRegistry) -> None:
    """Register the default storefront set, Amazon first."""
    for platform in (AmazonPlatform(), FlipkartPlatform(), EbayPlatform(), WalmartPlatform()):
        registry.register_platform(platform)
