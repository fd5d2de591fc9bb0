"""
Geospatial projection utilities for DEM grid coordinates.

Visualization grids are expressed in the DEM's projected CRS (UTM easting /
northing in meters); hover readouts convert them back to lon/lat.
"""
import logging
from functools import lru_cache
from typing import Optional, Sequence

from pyproj import Transformer
from pyproj.exceptions import CRSError

logger = logging.getLogger(__name__)


def get_utm_zone(longitude: float) -> int:
    """
    Calculate the UTM zone number from longitude.

    Args:
        longitude: Longitude in degrees

    Returns:
        UTM zone number (1-60)
    """
    return min(60, int((longitude + 180) / 6) + 1)


def get_utm_crs(longitude: float, latitude: float) -> str:
    """
    Get the appropriate UTM CRS (Coordinate Reference System) for a location.

    Args:
        longitude: Longitude in degrees
        latitude: Latitude in degrees

    Returns:
        EPSG code for the UTM zone
    """
    zone = get_utm_zone(longitude)
    # Northern hemisphere: EPSG:326XX, Southern hemisphere: EPSG:327XX
    hemisphere = "6" if latitude >= 0 else "7"
    return f"EPSG:32{hemisphere}{zone:02d}"


def infer_utm_crs(bounds_wgs84: Optional[Sequence[float]]) -> Optional[str]:
    """
    Infer the UTM CRS for a WGS84 bounding box from its center.

    Args:
        bounds_wgs84: (min_lon, min_lat, max_lon, max_lat)

    Returns:
        EPSG code, or None when bounds are missing
    """
    if not bounds_wgs84 or len(bounds_wgs84) != 4:
        return None
    min_lon, min_lat, max_lon, max_lat = bounds_wgs84
    return get_utm_crs((min_lon + max_lon) / 2, (min_lat + max_lat) / 2)


@lru_cache(maxsize=32)
def _to_wgs84_transformer(source_crs: str) -> Transformer:
    return Transformer.from_crs(
        source_crs,
        "EPSG:4326",
        always_xy=True,  # (x, y) -> (lon, lat)
    )


def project_to_lonlat(
    x: float,
    y: float,
    source_crs: str,
) -> Optional[tuple[float, float]]:
    """
    Project a planar coordinate back to lon/lat.

    Args:
        x: Easting in the source CRS
        y: Northing in the source CRS
        source_crs: CRS of the input coordinate (e.g. "EPSG:32644")

    Returns:
        (longitude, latitude) in degrees, or None if the CRS is unusable
    """
    try:
        transformer = _to_wgs84_transformer(source_crs)
    except CRSError as exc:
        logger.warning(f"Cannot build transformer for CRS {source_crs!r}: {exc}")
        return None

    lon, lat = transformer.transform(x, y)
    return (float(lon), float(lat))
