"""Rasterize zone polygons, compute cell area and sum values per zone."""
import logging
import math

import numpy
import pandas
from osgeo import gdal
from osgeo import ogr
from osgeo import osr

from . import alignment
from .raster import FLOAT_NODATA
from .raster import ZONE_NODATA
from .raster import ZoneRaster
from .raster import same_projection
from .unit_registry import u

LOGGER = logging.getLogger(__name__)

_ZONE_INDEX_FIELD = 'zone_index'

# WGS84 ellipsoid semi-major and semi-minor axes in meters.
_WGS84_A = 6378137.0
_WGS84_B = 6356752.3142


def rasterize_zones(zones, target_grid):
    """Burn zone indexes onto the grid of ``target_grid``.

    Each zone is burned with its 1-based position in ``zones`` at the cells
    whose centres it contains.  Where zones overlap, the later zone wins.
    Zones in another coordinate system are reprojected first.

    Args:
        zones (ZonePolygonSet): the zones to rasterize.
        target_grid (RasterLayer): layer whose grid the result shares.

    Returns:
        A ``ZoneRaster`` on ``target_grid``'s grid.
    """
    if not same_projection(zones.projection_wkt, target_grid.projection_wkt):
        LOGGER.info('Reprojecting zones to the target grid')
        zones = alignment.reproject_zones(zones, target_grid.projection_wkt)

    n_rows, n_cols = target_grid.shape
    raster = gdal.GetDriverByName('MEM').Create(
        '', n_cols, n_rows, 1, gdal.GDT_Int32)
    raster.SetGeoTransform(target_grid.geotransform)
    if target_grid.projection_wkt:
        raster.SetProjection(target_grid.projection_wkt)
    band = raster.GetRasterBand(1)
    band.SetNoDataValue(ZONE_NODATA)
    band.Fill(ZONE_NODATA)

    vector = ogr.GetDriverByName('MEMORY').CreateDataSource('zones')
    layer = zones.to_ogr_layer(vector, 'zones', index_field=_ZONE_INDEX_FIELD)
    gdal.RasterizeLayer(
        raster, [1], layer,
        options=['ALL_TOUCHED=FALSE', f'ATTRIBUTE={_ZONE_INDEX_FIELD}'])
    array = band.ReadAsArray()

    band = None
    raster = None
    layer = None
    vector = None

    zone_ids = {index: zone.zone_id
                for index, zone in enumerate(zones, start=1)}
    return ZoneRaster(array, target_grid.geotransform,
                      target_grid.projection_wkt, zone_ids=zone_ids)


def _wgs84_area_above(latitude):
    """Area in m^2 of the ellipsoid cap north of ``latitude`` degrees, scaled.

    Only differences of this function are meaningful: the difference between
    two latitudes is the area of the band between them over 360 degrees of
    longitude.
    """
    e = math.sqrt(1 - (_WGS84_B / _WGS84_A) ** 2)
    sin_lat = numpy.sin(numpy.radians(latitude))
    z_minus = 1 - e * sin_lat
    z_plus = 1 + e * sin_lat
    return math.pi * _WGS84_B ** 2 * (
        numpy.log(z_plus / z_minus) / (2 * e) +
        sin_lat / (z_plus * z_minus))


def _row_areas_geographic(layer):
    """Area in m^2 of one cell in each row of a lat/lon layer."""
    n_rows = layer.shape[0]
    pixel_x, pixel_y = layer.pixel_size
    row_edges = layer.geotransform[3] + pixel_y * numpy.arange(n_rows + 1)
    row_edges = numpy.clip(row_edges, -90, 90)
    band_areas = numpy.abs(
        _wgs84_area_above(row_edges[:-1]) - _wgs84_area_above(row_edges[1:]))
    return band_areas * abs(pixel_x) / 360.0


def cell_area(layer, mask=None):
    """Ground area of every cell of ``layer`` in square kilometers.

    For a geographic CRS the area of each row is the exact area of its
    latitude band on the WGS84 ellipsoid, so cells shrink towards the poles.
    For a projected CRS every cell has the nominal pixel area in the CRS's
    linear units.

    Args:
        layer (RasterLayer): layer whose grid defines the cells.
        mask (RasterLayer): optional layer on the same grid; its nodata
            cells are nodata in the result.

    Returns:
        A float64 ``RasterLayer`` of cell areas in km^2.

    Raises:
        ValueError if ``layer`` has no coordinate system.
        GridMismatchError if ``mask`` is not on ``layer``'s grid.
    """
    if not layer.projection_wkt:
        raise ValueError('Cell area needs a layer with a coordinate system')

    if layer.is_geographic():
        row_areas = _row_areas_geographic(layer)
        area_m2 = numpy.repeat(row_areas[:, numpy.newaxis], layer.shape[1],
                               axis=1)
    else:
        srs = osr.SpatialReference()
        srs.ImportFromWkt(layer.projection_wkt)
        pixel_x, pixel_y = layer.pixel_size
        meters_per_unit = srs.GetLinearUnits()
        area_m2 = numpy.full(
            layer.shape, abs(pixel_x * pixel_y) * meters_per_unit ** 2,
            dtype=numpy.float64)
    area_km2 = u.Quantity(area_m2, u.meter ** 2).to(u.kilometer ** 2).magnitude

    if mask is None:
        return layer.with_array(area_km2, FLOAT_NODATA)

    layer.assert_same_grid(mask)
    valid = mask.valid_mask()
    result = numpy.full(layer.shape, FLOAT_NODATA, dtype=numpy.float64)
    result[valid] = area_km2[valid]
    return layer.with_array(result, FLOAT_NODATA)


def zonal_sum(value_layer, zone_raster, name=None):
    """Sum the valid values of ``value_layer`` within each zone.

    Every zone that covers at least one cell of ``zone_raster`` appears in
    the result exactly once, with 0.0 when none of its cells hold a value.

    Args:
        value_layer (RasterLayer): the values to sum.
        zone_raster (ZoneRaster): zone indexes on the same grid.
        name (string): optional name for the returned series.

    Returns:
        ``pandas.Series`` of float sums indexed by zone identifier.

    Raises:
        GridMismatchError if the layers are not on the same grid.
    """
    zone_raster.assert_same_grid(value_layer)

    zone_valid = zone_raster.valid_mask()
    present_indexes = numpy.unique(zone_raster.array[zone_valid])
    if present_indexes.size == 0:
        LOGGER.warning('No zone covers any cell of the grid')
        return pandas.Series(
            [], index=pandas.Index([], name='zone_id'), dtype=float,
            name=name)

    summed = zone_valid & value_layer.valid_mask()
    sums = numpy.bincount(
        zone_raster.array[summed].astype(numpy.int64),
        weights=value_layer.array[summed].astype(numpy.float64),
        minlength=int(present_indexes.max()) + 1)

    return pandas.Series(
        [float(sums[index]) for index in present_indexes],
        index=pandas.Index(
            [zone_raster.zone_id(index) for index in present_indexes],
            name='zone_id'),
        dtype=float, name=name)
