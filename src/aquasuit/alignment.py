"""Bring heterogeneous layers onto a common grid.

Rasters are warped in memory with GDAL; zone polygons are reprojected with
OGR coordinate transformations.
"""
import logging

import numpy
import pygeoprocessing
import shapely.wkb
from osgeo import gdal
from osgeo import ogr
from osgeo import osr

from . import utils
from .raster import FLOAT_NODATA
from .raster import RasterLayer
from .raster import RasterStack
from .raster import ZonePolygonSet
from .raster import same_projection

LOGGER = logging.getLogger(__name__)

_RESAMPLE_METHODS = (
    'near', 'bilinear', 'cubic', 'cubicspline', 'lanczos', 'average', 'mode',
    'min', 'max', 'med', 'q1', 'q3')


class AlignmentError(ValueError):
    """Raised when a layer cannot be brought onto the reference grid."""


def _bounding_box_in(source_bbox, source_wkt, target_wkt):
    """Transform a bounding box into ``target_wkt`` if the CRSs differ."""
    if same_projection(source_wkt, target_wkt):
        return list(source_bbox)
    if not source_wkt or not target_wkt:
        raise AlignmentError(
            'Cannot compare a layer without a coordinate system to one with '
            'a coordinate system')
    try:
        return pygeoprocessing.transform_bounding_box(
            source_bbox, source_wkt, target_wkt)
    except (ValueError, RuntimeError) as error:
        raise AlignmentError(
            f'Bounding box {source_bbox} could not be transformed into the '
            f'reference coordinate system: {error}') from error


def _check_overlap(reference, source):
    """Raise ``AlignmentError`` if ``source`` cannot cover any of ``reference``."""
    for name, layer in (('reference', reference), ('source', source)):
        if 0 in layer.shape:
            raise AlignmentError(f'The {name} layer has zero extent')

    reference_bbox = reference.bounding_box
    source_bbox = _bounding_box_in(
        source.bounding_box, source.projection_wkt, reference.projection_wkt)
    LOGGER.debug(
        f'Checking overlap of {source_bbox} with reference {reference_bbox}')

    if (source_bbox[0] >= reference_bbox[2] or
            source_bbox[2] <= reference_bbox[0] or
            source_bbox[1] >= reference_bbox[3] or
            source_bbox[3] <= reference_bbox[1]):
        raise AlignmentError(
            f'Layer with bounding box {source_bbox} does not overlap the '
            f'reference bounding box {reference_bbox}')


def align_layer(reference, source, resample_method='near'):
    """Warp ``source`` onto exactly the grid of ``reference``.

    The result has the reference's CRS, extent, resolution and shape.
    Reference cells that the source does not cover are nodata.

    Args:
        reference (RasterLayer): layer whose grid is the target.
        source (RasterLayer): layer to warp.  It is not modified.
        resample_method (string): a GDAL resampling algorithm name, nearest
            neighbour by default.

    Returns:
        A new ``RasterLayer``.

    Raises:
        AlignmentError if the source does not overlap the reference or
            either layer has zero extent.
        ValueError if ``resample_method`` is not a known algorithm.
    """
    if resample_method not in _RESAMPLE_METHODS:
        raise ValueError(
            f'Unknown resample method "{resample_method}", expected one of '
            f'{_RESAMPLE_METHODS}')
    _check_overlap(reference, source)

    if source.same_grid(reference):
        return source

    # Cells outside the source must come out as nodata, so a source without
    # nodata is promoted to float with a float sentinel.
    if source.nodata is None:
        source = RasterLayer(
            numpy.where(source.valid_mask(), source.array,
                        FLOAT_NODATA).astype(numpy.float64),
            source.geotransform, source.projection_wkt, nodata=FLOAT_NODATA)

    n_rows, n_cols = reference.shape
    source_raster = source.to_gdal_dataset()
    warped_raster = gdal.Warp(
        '', source_raster, format='MEM',
        outputBounds=reference.bounding_box,
        width=n_cols, height=n_rows,
        dstSRS=reference.projection_wkt or None,
        resampleAlg=resample_method,
        srcNodata=source.nodata, dstNodata=source.nodata)
    warped = RasterLayer.from_gdal_dataset(warped_raster)
    source_raster = None
    warped_raster = None

    LOGGER.debug(f'Aligned layer {source!r} to {reference!r}')
    # outputBounds can leave float noise in the warped geotransform
    return reference.with_array(warped.array, source.nodata)


def align_to_reference(reference, sources, resample_method='near'):
    """Align each of ``sources`` to the grid of ``reference``.

    Returns:
        list of ``RasterLayer`` in the order of ``sources``.
    """
    return [align_layer(reference, source, resample_method)
            for source in sources]


def build_stack(layers, resample_method='near'):
    """Align every layer to the first one and stack them.

    Raises:
        ValueError if ``layers`` is empty.
        AlignmentError if a layer does not overlap the first one.
    """
    layers = list(layers)
    if not layers:
        raise ValueError('Cannot build a stack from zero layers')
    reference = layers[0]
    return RasterStack(
        [reference] + align_to_reference(
            reference, layers[1:], resample_method))


def reproject_zones(zones, target_projection_wkt):
    """Reproject every zone polygon into ``target_projection_wkt``.

    Args:
        zones (ZonePolygonSet): zones to reproject.  Not modified.
        target_projection_wkt (string): WKT of the target CRS.

    Returns:
        A new ``ZonePolygonSet``.
    """
    if same_projection(zones.projection_wkt, target_projection_wkt):
        return zones
    if not zones.projection_wkt or not target_projection_wkt:
        raise AlignmentError(
            'Zones and target must both have a coordinate system to '
            'reproject between them')

    base_srs = osr.SpatialReference()
    base_srs.ImportFromWkt(zones.projection_wkt)
    target_srs = osr.SpatialReference()
    target_srs.ImportFromWkt(target_projection_wkt)
    transformer = utils.create_coordinate_transformer(base_srs, target_srs)

    reprojected = []
    for zone in zones:
        geometry = ogr.CreateGeometryFromWkb(zone.geometry.wkb)
        geometry.Transform(transformer)
        reprojected.append(zone._replace(
            geometry=shapely.wkb.loads(bytes(geometry.ExportToWkb()))))
    LOGGER.debug(f'Reprojected {len(reprojected)} zones')
    return ZonePolygonSet(reprojected, target_projection_wkt)
