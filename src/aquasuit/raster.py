"""In-memory raster and zone data model shared by the suitability pipeline.

Every layer carries its own grid (geotransform, projection and shape) so that
operations can check that operands line up before doing cell-wise algebra.
Layers are immutable: operations build new layers rather than writing into
existing arrays.
"""
import collections
import logging

import numpy
import pygeoprocessing
import shapely.wkb
from osgeo import gdal
from osgeo import gdal_array
from osgeo import ogr
from osgeo import osr

LOGGER = logging.getLogger(__name__)

# Sentinels used for derived layers.  The float sentinel is representable
# exactly in both float32 and float64.
FLOAT_NODATA = float(numpy.finfo(numpy.float32).min)
BYTE_NODATA = 255
ZONE_NODATA = 0

# Largest geotransform difference, as a fraction of a pixel, at which two
# layers are still on the same grid.
GRID_TOLERANCE = 1e-6


class GridMismatchError(ValueError):
    """Raised when cell-wise operations are given layers on different grids."""


def same_projection(wkt_a, wkt_b):
    """Whether two projection WKT strings describe the same CRS.

    Two empty (or ``None``) projections are considered the same.
    """
    if not wkt_a or not wkt_b:
        return not wkt_a and not wkt_b
    srs_a = osr.SpatialReference()
    srs_a.ImportFromWkt(wkt_a)
    srs_b = osr.SpatialReference()
    srs_b.ImportFromWkt(wkt_b)
    return bool(srs_a.IsSame(srs_b))


class RasterLayer(object):
    """A single band of cell values on a georeferenced grid.

    Attributes:
        array (numpy.ndarray): read-only 2D array of cell values.
        geotransform (tuple): GDAL-style 6-element geotransform
            ``(x_origin, pixel_x, 0, y_origin, 0, pixel_y)``.
        projection_wkt (string): WKT of the layer's coordinate system.
        nodata (number or None): the nodata sentinel of ``array``.  NaN
            cells of floating point arrays are nodata as well.
    """

    def __init__(self, array, geotransform, projection_wkt, nodata=None):
        array = numpy.array(array, copy=True)
        if array.ndim != 2:
            raise ValueError(
                f'A raster layer must be 2-dimensional, got shape '
                f'{array.shape}')
        geotransform = tuple(float(x) for x in geotransform)
        if len(geotransform) != 6:
            raise ValueError(
                f'Expected a 6-element geotransform, got {geotransform}')
        if geotransform[2] != 0 or geotransform[4] != 0:
            raise ValueError('Rotated geotransforms are not supported')
        array.setflags(write=False)

        self.array = array
        self.geotransform = geotransform
        self.projection_wkt = projection_wkt or ''
        self.nodata = nodata

    def __repr__(self):
        return (f'{type(self).__name__}(shape={self.shape}, '
                f'geotransform={self.geotransform}, nodata={self.nodata})')

    @property
    def shape(self):
        return self.array.shape

    @property
    def pixel_size(self):
        """Tuple of ``(pixel_x, pixel_y)``; ``pixel_y`` is usually negative."""
        return (self.geotransform[1], self.geotransform[5])

    @property
    def bounding_box(self):
        """Bounding box as ``[xmin, ymin, xmax, ymax]``."""
        n_rows, n_cols = self.shape
        x_a = self.geotransform[0]
        x_b = x_a + self.geotransform[1] * n_cols
        y_a = self.geotransform[3]
        y_b = y_a + self.geotransform[5] * n_rows
        return [min(x_a, x_b), min(y_a, y_b), max(x_a, x_b), max(y_a, y_b)]

    def valid_mask(self):
        """Boolean array that is True where a cell holds a real value."""
        valid = ~pygeoprocessing.array_equals_nodata(self.array, self.nodata)
        if numpy.issubdtype(self.array.dtype, numpy.floating):
            valid &= ~numpy.isnan(self.array)
        return valid

    def same_grid(self, other):
        """Whether ``other`` has the same shape, geotransform and CRS.

        Geotransforms may differ by at most ``GRID_TOLERANCE`` of this
        layer's smaller pixel dimension, whatever the magnitude of the
        origin coordinates.
        """
        if self.shape != other.shape:
            return False
        tolerance = GRID_TOLERANCE * min(
            abs(self.geotransform[1]), abs(self.geotransform[5]))
        return (
            numpy.allclose(self.geotransform, other.geotransform,
                           rtol=0, atol=tolerance) and
            same_projection(self.projection_wkt, other.projection_wkt))

    def assert_same_grid(self, other):
        """Raise ``GridMismatchError`` unless ``other`` shares this grid."""
        if not self.same_grid(other):
            raise GridMismatchError(
                f'Layers are not on the same grid: {self!r} vs {other!r}')

    def with_array(self, array, nodata):
        """Build a new layer on this layer's grid holding ``array``."""
        return RasterLayer(array, self.geotransform, self.projection_wkt,
                           nodata=nodata)

    def is_geographic(self):
        """Whether the layer's CRS is a geographic (lat/lon) system."""
        if not self.projection_wkt:
            return False
        srs = osr.SpatialReference()
        srs.ImportFromWkt(self.projection_wkt)
        return bool(srs.IsGeographic())

    def to_gdal_dataset(self):
        """Copy the layer into a single-band GDAL ``MEM`` dataset."""
        n_rows, n_cols = self.shape
        gdal_type = gdal_array.NumericTypeCodeToGDALTypeCode(self.array.dtype)
        raster = gdal.GetDriverByName('MEM').Create(
            '', n_cols, n_rows, 1, gdal_type)
        raster.SetGeoTransform(self.geotransform)
        if self.projection_wkt:
            raster.SetProjection(self.projection_wkt)
        band = raster.GetRasterBand(1)
        if self.nodata is not None:
            band.SetNoDataValue(float(self.nodata))
        band.WriteArray(self.array)
        band = None
        return raster

    @classmethod
    def from_gdal_dataset(cls, dataset, band_index=1):
        """Read one band of an open GDAL raster into a new layer."""
        band = dataset.GetRasterBand(band_index)
        return cls(band.ReadAsArray(), dataset.GetGeoTransform(),
                   dataset.GetProjection(), nodata=band.GetNoDataValue())

    @classmethod
    def from_path(cls, raster_path, band_index=1):
        """Load one band of a raster on disk."""
        raster_info = pygeoprocessing.get_raster_info(raster_path)
        array = pygeoprocessing.raster_to_numpy_array(
            raster_path, band_id=band_index)
        LOGGER.debug(f'Loaded {raster_path} with shape {array.shape}')
        return cls(array, raster_info['geotransform'],
                   raster_info['projection_wkt'],
                   nodata=raster_info['nodata'][band_index - 1])

    def to_path(self, target_path):
        """Write the layer to a GeoTIFF at ``target_path``."""
        pygeoprocessing.numpy_array_to_raster(
            self.array, self.nodata, self.pixel_size,
            (self.geotransform[0], self.geotransform[3]),
            self.projection_wkt or None, target_path)


class RasterStack(object):
    """An ordered sequence of layers that all share one grid."""

    def __init__(self, layers):
        layers = tuple(layers)
        if not layers:
            raise ValueError('A raster stack needs at least one layer')
        for layer in layers[1:]:
            layers[0].assert_same_grid(layer)
        self.layers = layers

    def __len__(self):
        return len(self.layers)

    def __iter__(self):
        return iter(self.layers)

    def __getitem__(self, index):
        return self.layers[index]

    @property
    def reference(self):
        """The first layer, whose grid every other layer shares."""
        return self.layers[0]


def multiply(*layers, target_nodata=FLOAT_NODATA, target_dtype=numpy.float64):
    """Cell-wise product of layers on one grid.

    A cell is nodata in the result if it is nodata in any operand.

    Raises:
        ValueError if no layers are given.
        GridMismatchError if the layers are not on the same grid.
    """
    if not layers:
        raise ValueError('At least one layer is required')
    reference = layers[0]
    for layer in layers[1:]:
        reference.assert_same_grid(layer)

    valid = numpy.logical_and.reduce([layer.valid_mask() for layer in layers])
    product = numpy.ones(reference.shape, dtype=numpy.float64)
    for layer in layers:
        product[valid] *= layer.array[valid]

    result = numpy.full(reference.shape, target_nodata, dtype=target_dtype)
    result[valid] = product[valid]
    return reference.with_array(result, target_nodata)


class ZoneRaster(RasterLayer):
    """Raster of integer zone indexes with a map back to zone identifiers.

    Cells hold ``1..n`` inside a zone and ``ZONE_NODATA`` elsewhere.
    ``zone_ids`` maps each index to its zone identifier; when it is not
    given, the index itself is the identifier.
    """

    def __init__(self, array, geotransform, projection_wkt, zone_ids=None):
        super().__init__(numpy.asarray(array, dtype=numpy.int32),
                         geotransform, projection_wkt, nodata=ZONE_NODATA)
        if zone_ids is None:
            zone_ids = {
                int(index): int(index) for index in numpy.unique(self.array)
                if index != ZONE_NODATA}
        self.zone_ids = dict(zone_ids)

    def zone_id(self, index):
        return self.zone_ids[int(index)]


Zone = collections.namedtuple('Zone', ['zone_id', 'name', 'geometry'])


class ZonePolygonSet(object):
    """An ordered collection of polygonal zones in one coordinate system."""

    def __init__(self, zones, projection_wkt):
        zones = [Zone(*zone) for zone in zones]
        seen_ids = set()
        for zone in zones:
            if zone.zone_id in seen_ids:
                raise ValueError(f'Duplicate zone identifier {zone.zone_id}')
            seen_ids.add(zone.zone_id)
            if zone.geometry.geom_type not in ('Polygon', 'MultiPolygon'):
                raise ValueError(
                    f'Zone {zone.zone_id} has a {zone.geometry.geom_type} '
                    'geometry; only polygons are allowed')
        self.zones = tuple(zones)
        self.projection_wkt = projection_wkt or ''

    def __iter__(self):
        return iter(self.zones)

    def __len__(self):
        return len(self.zones)

    @property
    def zone_ids(self):
        return [zone.zone_id for zone in self.zones]

    @property
    def names(self):
        return {zone.zone_id: zone.name for zone in self.zones}

    @property
    def bounding_box(self):
        """Bounding box of all zones as ``[xmin, ymin, xmax, ymax]``."""
        if not self.zones:
            raise ValueError('An empty zone set has no bounding box')
        bounds = numpy.array([zone.geometry.bounds for zone in self.zones])
        return [bounds[:, 0].min(), bounds[:, 1].min(),
                bounds[:, 2].max(), bounds[:, 3].max()]

    @classmethod
    def from_vector(cls, vector_path, id_field, name_field=None, layer_id=0):
        """Read polygon features and their identifiers from a vector.

        Args:
            vector_path (string): path to a GDAL-compatible polygon vector.
            id_field (string): field holding each zone's unique identifier.
            name_field (string): optional field holding a display name.
            layer_id (int or string): the layer to read.

        Returns:
            A ``ZonePolygonSet``.
        """
        vector = gdal.OpenEx(vector_path, gdal.OF_VECTOR)
        layer = vector.GetLayer(layer_id)
        srs = layer.GetSpatialRef()
        projection_wkt = srs.ExportToWkt() if srs is not None else ''

        zones = []
        for feature in layer:
            geometry = feature.GetGeometryRef()
            if geometry is None or geometry.IsEmpty():
                LOGGER.warning(
                    f'Skipping feature {feature.GetFID()} of {vector_path} '
                    'because it has no geometry')
                continue
            name = feature.GetField(name_field) if name_field else None
            zones.append(Zone(
                feature.GetField(id_field), name,
                shapely.wkb.loads(bytes(geometry.ExportToWkb()))))
        layer = None
        vector = None
        return cls(zones, projection_wkt)

    def to_ogr_layer(self, vector, layer_name, index_field=None):
        """Copy the zones into a new layer of an open OGR datasource.

        When ``index_field`` is given, each feature gets its 1-based position
        in this set in an integer field of that name.
        """
        srs = None
        if self.projection_wkt:
            srs = osr.SpatialReference()
            srs.ImportFromWkt(self.projection_wkt)
        layer = vector.CreateLayer(layer_name, srs, ogr.wkbUnknown)
        if index_field:
            layer.CreateField(ogr.FieldDefn(index_field, ogr.OFTInteger))
        layer_defn = layer.GetLayerDefn()
        layer.StartTransaction()
        for index, zone in enumerate(self.zones, start=1):
            feature = ogr.Feature(layer_defn)
            feature.SetGeometry(ogr.CreateGeometryFromWkb(zone.geometry.wkb))
            if index_field:
                feature.SetField(index_field, index)
            layer.CreateFeature(feature)
            feature = None
        layer.CommitTransaction()
        return layer
