from __future__ import annotations

import logging
from typing import Awaitable, Callable

from extsync.models import ExtensionId, PinnedOverride, ResolvedVersion

logger: logging.Logger = logging.getLogger(__name__)

LatestVersionLookup = Callable[[str], Awaitable[str]]


class VersionResolver(object):
    """Pick the version to fetch for an extension.

    Pinned overrides win over the Marketplace. Marketplace answers are
    cached for the lifetime of the resolver, i.e. one synchronization run.
    """

    def __init__(
        self,
        lookup_latest: LatestVersionLookup,
        pinned_overrides: dict[str, PinnedOverride] | None = None,
    ) -> None:
        self.lookup_latest = lookup_latest
        self.pinned_overrides = dict(pinned_overrides or {})
        self._cache: dict[str, str] = {}

    def pinned(self, extension_id: ExtensionId) -> ResolvedVersion | None:
        override = self.pinned_overrides.get(extension_id.key)
        if override is None:
            return None
        return ResolvedVersion(
            extension_id=extension_id,
            version=override.version,
            static_url=override.static_url,
            pinned=True,
        )

    async def resolve(
        self,
        extension_id: ExtensionId,
        use_pins: bool = True,
        refresh: bool = False,
    ) -> ResolvedVersion:
        """Return the version to download, raising VersionNotFoundError."""
        if use_pins:
            pinned = self.pinned(extension_id)
            if pinned is not None:
                logger.info(f"Using pinned version {pinned.version} for {extension_id}")
                return pinned

        key = extension_id.key
        if refresh or key not in self._cache:
            self._cache[key] = await self.lookup_latest(f"{extension_id}")
            logger.info(f"Latest version of {extension_id}: {self._cache[key]}")
        return ResolvedVersion(extension_id=extension_id, version=self._cache[key])
