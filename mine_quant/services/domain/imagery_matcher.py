"""
Domain service: association of satellite/probability imagery with blocks.

Imagery can exist at two granularities: per block (crops attached to a tile
block's properties) and per tile (the whole tile image). Block-level imagery
is indexed by persistent id, block id and label; lookups prefer entries that
carry an actual image over entries that only carry bounds, and fall back to
the owning tile's imagery.
"""
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Iterable, Optional

from mine_quant.domain.models import BlockImagery
from mine_quant.utils.field_resolver import first_text, parse_numeric
from mine_quant.utils.geometry import normalize_bounds_tuple

logger = logging.getLogger(__name__)


def feature_list(value: Any) -> list[Mapping[str, Any]]:
    if isinstance(value, Mapping):
        value = value.get("features")
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def tile_blocks(tile: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """Block features of a tile under either spelling."""
    blocks = tile.get("mine_blocks")
    if blocks is None:
        blocks = tile.get("mineBlocks")
    return feature_list(blocks)


def tile_identifier(tile: Mapping[str, Any], index: int) -> str:
    """Display identifier of a tile, matching the labels used for its blocks."""
    tile_id = first_text(tile.get("tile_id"), tile.get("tileId"))
    if tile_id:
        return tile_id
    label = first_text(tile.get("tile_label"))
    if label:
        return label
    tile_index = parse_numeric(tile.get("tile_index"))
    if tile_index is not None:
        return f"tile_{int(tile_index)}"
    return f"Tile {index + 1}"


def _transform(value: Any) -> Optional[list[float]]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return None
    parsed = [parse_numeric(item) for item in value]
    if not parsed or any(item is None for item in parsed):
        return None
    return parsed


def _imagery_from(source: Mapping[str, Any], kind: str, tile_id: Optional[str]) -> Optional[BlockImagery]:
    satellite = first_text(source.get("image_base64"), source.get("satellite_image"), source.get("imageBase64"))
    probability = first_text(
        source.get("probability_map_base64"),
        source.get("probability_image"),
        source.get("probabilityMapBase64"),
    )
    bounds_raw = source.get("bbox") if kind == "block" else None
    if bounds_raw is None:
        bounds_raw = source.get("bounds")
    bounds = normalize_bounds_tuple(bounds_raw)
    if not (satellite or probability or bounds):
        return None
    crs = source.get("crs")
    return BlockImagery(
        satellite_image=satellite,
        probability_image=probability,
        bounds=bounds,
        transform=_transform(source.get("transform")),
        crs=crs if isinstance(crs, str) and crs else None,
        source=kind,
        tile_id=tile_id,
    )


class ImageryIndex:
    """
    Multi-key index of block imagery plus per-tile fallbacks.

    Each key maps to every candidate registered under it, in insertion
    order, so that a later entry carrying an image can win over an earlier
    bounds-only entry.
    """

    def __init__(self):
        self._by_key: dict[str, list[BlockImagery]] = {}
        self._by_tile: dict[str, BlockImagery] = {}

    def add_block(self, keys: Iterable[Optional[str]], imagery: BlockImagery) -> None:
        seen = set()
        for key in keys:
            if not key or key in seen:
                continue
            seen.add(key)
            self._by_key.setdefault(key, []).append(imagery)

    def add_tile(self, tile_id: str, imagery: BlockImagery) -> None:
        self._by_tile.setdefault(tile_id, imagery)

    def match(self, keys: Iterable[Optional[str]]) -> Optional[BlockImagery]:
        """
        Find block imagery for the first key that resolves.

        Keys are probed in priority order; an entry with an image beats an
        entry with only bounds across all keys.

        Args:
            keys: Candidate keys, highest priority first

        Returns:
            Matching imagery or None
        """
        bounds_only: Optional[BlockImagery] = None
        for key in keys:
            if not key:
                continue
            for candidate in self._by_key.get(key, []):
                if candidate.has_image:
                    return candidate
                if bounds_only is None:
                    bounds_only = candidate
        return bounds_only

    def tile_fallback(self, tile_id: Optional[str]) -> Optional[BlockImagery]:
        if not tile_id:
            return None
        return self._by_tile.get(tile_id)

    def resolve(self, keys: Iterable[Optional[str]], tile_id: Optional[str]) -> Optional[BlockImagery]:
        """Block-level match with an image, else the owning tile's imagery, else bounds-only block match."""
        matched = self.match(keys)
        if matched is not None and matched.has_image:
            return matched
        fallback = self.tile_fallback(tile_id)
        if fallback is not None:
            return fallback
        return matched

    def __len__(self) -> int:
        return len(self._by_key) + len(self._by_tile)


def block_keys(properties: Mapping[str, Any], fallback_id: Optional[str] = None) -> list[Optional[str]]:
    """Lookup keys of a block: persistent id, block id, label."""
    return [
        first_text(properties.get("persistent_id"), properties.get("persistentId")),
        first_text(properties.get("block_id"), properties.get("id")) or fallback_id,
        first_text(properties.get("name")),
    ]


def build_imagery_index(results: Any) -> ImageryIndex:
    """
    Build the imagery index for an analysis result.

    Args:
        results: AnalysisResult mapping

    Returns:
        ImageryIndex with block-level and tile-level entries
    """
    index = ImageryIndex()
    if not isinstance(results, Mapping):
        return index

    # Merged features are registered first so they win shared keys
    merged = results.get("merged_blocks")
    if merged is None:
        merged = results.get("mergedBlocks")
    for position, feature in enumerate(feature_list(merged)):
        properties = feature.get("properties")
        if not isinstance(properties, Mapping):
            continue
        tile_id = first_text(properties.get("tile_id")) or "mosaic"
        imagery = _imagery_from(properties, "block", tile_id)
        if imagery is not None:
            index.add_block(block_keys(properties, f"merged-{position}"), imagery)

    tiles = results.get("tiles")
    if not isinstance(tiles, Sequence) or isinstance(tiles, (str, bytes)):
        return index

    for tile_position, tile in enumerate(tiles):
        if not isinstance(tile, Mapping):
            continue
        tile_id = tile_identifier(tile, tile_position)
        tile_imagery = _imagery_from(tile, "tile", tile_id)
        if tile_imagery is not None:
            index.add_tile(tile_id, tile_imagery)

        for block_position, block in enumerate(tile_blocks(tile)):
            properties = block.get("properties")
            if not isinstance(properties, Mapping):
                continue
            imagery = _imagery_from(properties, "block", tile_id)
            if imagery is None:
                continue
            fallback_id = f"{tile_id}-block-{block_position + 1}"
            index.add_block(block_keys(properties, fallback_id), imagery)

    logger.debug(f"Built imagery index with {len(index)} keys")
    return index
