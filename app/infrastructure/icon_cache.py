"""
Infrastructure layer: Session-scoped marker icon cache.

Icons are addressed by a hash of their descriptor. Lookups never wait for
a download: a missing icon resolves to a generated fallback, and loads
may complete in any order.
"""
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable
import base64
import hashlib
import logging

from app.domain.models import IconAsset
from app.infrastructure.data_source import DataSourceError

logger = logging.getLogger(__name__)


# Marker palette, one color per taxon in order of first use
PALETTE = [
    "#0088FE", "#00C49F", "#FFBB28", "#FF8042", "#8884D8",
    "#82CA9D", "#FFC658", "#FF7C7C", "#8DD1E1", "#D084D0",
]

IconLoader = Callable[[str], Awaitable[bytes]]


@dataclass(frozen=True)
class IconSpec:
    """What an icon depicts; its hash is the cache key."""
    taxon: str
    size: int
    color: str

    @property
    def key(self) -> str:
        digest = hashlib.sha256(f"{self.taxon}|{self.size}|{self.color}".encode("utf-8"))
        return digest.hexdigest()

    @property
    def slug(self) -> str:
        return "".join(c if c.isalnum() else "_" for c in self.taxon.lower())


def color_for_taxon(taxon: str, known_taxa: list[str]) -> str:
    """Palette color for a taxon, assigned in order of first appearance."""
    if taxon not in known_taxa:
        known_taxa.append(taxon)
    return PALETTE[known_taxa.index(taxon) % len(PALETTE)]


def generate_fallback_icon(spec: IconSpec) -> IconAsset:
    """Build a plain circle SVG for a spec."""
    radius = spec.size / 2
    svg = (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{spec.size}" height="{spec.size}">'
        f'<circle cx="{radius}" cy="{radius}" r="{radius - 2}" '
        f'fill="{spec.color}" stroke="#ffffff" stroke-width="2"/></svg>'
    )
    return IconAsset(
        key=spec.key,
        content_type="image/svg+xml",
        data=svg,
        is_fallback=True,
    )


class IconCache:
    """
    Content-addressed icon store owned by one view session.

    Holds at most ``max_entries`` assets; the oldest is evicted first.
    """

    def __init__(self, max_entries: int = 128):
        self.max_entries = max_entries
        self._assets: OrderedDict[str, IconAsset] = OrderedDict()

    def __len__(self) -> int:
        return len(self._assets)

    def __contains__(self, key: str) -> bool:
        return key in self._assets

    def _put(self, asset: IconAsset) -> IconAsset:
        self._assets[asset.key] = asset
        self._assets.move_to_end(asset.key)
        while len(self._assets) > self.max_entries:
            evicted, _ = self._assets.popitem(last=False)
            logger.debug(f"Evicted icon {evicted[:12]}")
        return asset

    def store(self, spec: IconSpec, payload: bytes, content_type: str = "image/png") -> IconAsset:
        """Store a loaded icon payload."""
        return self._put(IconAsset(
            key=spec.key,
            content_type=content_type,
            data=base64.b64encode(payload).decode("ascii"),
        ))

    def resolve(self, spec: IconSpec) -> IconAsset:
        """Return the cached icon, or a generated fallback if none is ready."""
        asset = self._assets.get(spec.key)
        if asset is not None:
            return asset
        return generate_fallback_icon(spec)

    async def fetch(self, spec: IconSpec, loader: IconLoader, source: str) -> IconAsset:
        """
        Load an icon and cache it.

        Load failures are logged and cached as the fallback icon so the
        same source is not retried for the rest of the session.

        Args:
            spec: Icon descriptor
            loader: Coroutine function returning the icon bytes
            source: Path or URL passed to the loader

        Returns:
            The cached IconAsset
        """
        if spec.key in self._assets:
            return self._assets[spec.key]

        try:
            payload = await loader(source)
        except DataSourceError as e:
            logger.warning(f"Icon for taxon '{spec.taxon}' unavailable, using fallback: {str(e)}")
            return self._put(generate_fallback_icon(spec))

        content_type = "image/svg+xml" if source.endswith(".svg") else "image/png"
        return self.store(spec, payload, content_type)

    def clear(self) -> None:
        self._assets.clear()
