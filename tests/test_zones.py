"""Tests for zone rasterization, cell area and zonal sums."""
import unittest

import numpy
import numpy.testing
import pandas
import pandas.testing
import shapely.geometry
from osgeo import osr

_ORIGIN_X = 460000
_ORIGIN_Y = 4930000
_PIXEL = 1000


def _wkt(epsg_code):
    srs = osr.SpatialReference()
    srs.ImportFromEPSG(epsg_code)
    return srs.ExportToWkt()


def _utm_layer(array, nodata=None):
    from aquasuit.raster import RasterLayer
    return RasterLayer(
        numpy.array(array, dtype=numpy.float32),
        (_ORIGIN_X, _PIXEL, 0, _ORIGIN_Y, 0, -_PIXEL), _wkt(32610),
        nodata=nodata)


def _cell_box(col_min, row_min, col_max, row_max):
    """Polygon covering whole cells of the UTM test grid."""
    return shapely.geometry.box(
        _ORIGIN_X + col_min * _PIXEL, _ORIGIN_Y - row_max * _PIXEL,
        _ORIGIN_X + col_max * _PIXEL, _ORIGIN_Y - row_min * _PIXEL)


class RasterizeZonesTests(unittest.TestCase):
    """Tests for rasterize_zones."""

    def test_rasterize(self):
        """Zones: each zone is burned at the cells it covers."""
        from aquasuit import zones
        from aquasuit.raster import ZonePolygonSet

        grid = _utm_layer(numpy.zeros((10, 10)))
        zone_set = ZonePolygonSet([
            ('ZA', 'Zone A', _cell_box(0, 0, 5, 10)),
            ('ZB', 'Zone B', _cell_box(7, 0, 10, 5)),
        ], _wkt(32610))
        zone_raster = zones.rasterize_zones(zone_set, grid)

        self.assertTrue(zone_raster.same_grid(grid))
        self.assertEqual(zone_raster.zone_ids, {1: 'ZA', 2: 'ZB'})
        self.assertEqual(numpy.count_nonzero(zone_raster.array == 1), 50)
        self.assertEqual(numpy.count_nonzero(zone_raster.array == 2), 15)
        self.assertEqual(numpy.count_nonzero(zone_raster.array == 0), 35)
        self.assertEqual(zone_raster.array[0, 6], zone_raster.nodata)

    def test_cell_centres(self):
        """Zones: a polygon that misses a cell's centre does not claim it."""
        from aquasuit import zones
        from aquasuit.raster import ZonePolygonSet

        grid = _utm_layer(numpy.zeros((2, 2)))
        # covers the left 40% of the first column only
        sliver = shapely.geometry.box(
            _ORIGIN_X, _ORIGIN_Y - 2 * _PIXEL,
            _ORIGIN_X + 0.4 * _PIXEL, _ORIGIN_Y)
        zone_raster = zones.rasterize_zones(
            ZonePolygonSet([(1, None, sliver)], _wkt(32610)), grid)
        numpy.testing.assert_array_equal(zone_raster.array, 0)

    def test_overlap_later_zone_wins(self):
        """Zones: where zones overlap the later one is burned."""
        from aquasuit import zones
        from aquasuit.raster import ZonePolygonSet

        grid = _utm_layer(numpy.zeros((1, 4)))
        zone_set = ZonePolygonSet([
            ('first', None, _cell_box(0, 0, 3, 1)),
            ('second', None, _cell_box(2, 0, 4, 1)),
        ], _wkt(32610))
        zone_raster = zones.rasterize_zones(zone_set, grid)
        numpy.testing.assert_array_equal(zone_raster.array, [[1, 1, 2, 2]])

    def test_zones_in_other_crs(self):
        """Zones: geographic zones rasterize onto the projected grid."""
        from aquasuit import alignment
        from aquasuit import zones
        from aquasuit.raster import ZonePolygonSet

        grid = _utm_layer(numpy.zeros((10, 10)))
        utm_zones = ZonePolygonSet(
            [('A', None, _cell_box(0, 0, 5, 10))], _wkt(32610))
        geographic_zones = alignment.reproject_zones(utm_zones, _wkt(4326))

        zone_raster = zones.rasterize_zones(geographic_zones, grid)
        self.assertEqual(zone_raster.shape, grid.shape)
        self.assertEqual(zone_raster.geotransform, grid.geotransform)
        self.assertTrue(zone_raster.same_grid(grid))
        # the round trip through lon/lat bends edges by far less than a cell
        numpy.testing.assert_array_equal(
            zone_raster.array, [[1] * 5 + [0] * 5] * 10)


class CellAreaTests(unittest.TestCase):
    """Tests for cell_area."""

    def test_projected(self):
        """Zones: 1000m cells are 1 square kilometer."""
        from aquasuit import zones

        areas = zones.cell_area(_utm_layer(numpy.zeros((3, 4))))
        numpy.testing.assert_allclose(areas.array, 1.0)

    def test_mask(self):
        """Zones: masked cells have no area."""
        from aquasuit import zones
        from aquasuit.raster import FLOAT_NODATA

        mask = _utm_layer([[1, 255], [255, 1]], nodata=255)
        areas = zones.cell_area(mask, mask=mask)
        numpy.testing.assert_allclose(
            areas.array, [[1.0, FLOAT_NODATA], [FLOAT_NODATA, 1.0]])
        numpy.testing.assert_array_equal(
            areas.valid_mask(), mask.valid_mask())

    def test_geographic_latitude_dependence(self):
        """Zones: geographic cells shrink away from the equator."""
        from aquasuit import zones
        from aquasuit.raster import RasterLayer

        # one-degree cells covering the whole globe
        layer = RasterLayer(
            numpy.zeros((180, 360), dtype=numpy.float32),
            (-180, 1, 0, 90, 0, -1), _wkt(4326))
        areas = zones.cell_area(layer).array

        self.assertTrue((areas > 0).all())
        # rows are symmetric about the equator and grow towards it
        numpy.testing.assert_allclose(areas[:90], areas[::-1][:90])
        self.assertTrue((numpy.diff(areas[:90, 0]) > 0).all())
        # a one-degree cell at the equator is about 12,309 km^2
        self.assertAlmostEqual(areas[89, 0], 12308.8, delta=1)
        # the WGS84 ellipsoid has a surface area of about 510,065,622 km^2
        numpy.testing.assert_allclose(areas.sum(), 510065622, rtol=1e-5)

    def test_no_crs(self):
        """Zones: cell area needs a coordinate system."""
        from aquasuit import zones
        from aquasuit.raster import RasterLayer

        with self.assertRaises(ValueError):
            zones.cell_area(RasterLayer(
                numpy.zeros((2, 2)), (0, 1, 0, 0, 0, -1), ''))


class ZonalSumTests(unittest.TestCase):
    """Tests for zonal_sum."""

    def test_zonal_sum(self):
        """Zones: sums cover exactly the zones present, zeros included."""
        from aquasuit import zones
        from aquasuit.raster import ZoneRaster

        grid = _utm_layer(numpy.zeros((2, 3)))
        zone_raster = ZoneRaster(
            [[1, 1, 2], [3, 0, 3]], grid.geotransform, grid.projection_wkt,
            zone_ids={1: 'A', 2: 'B', 3: 'C', 4: 'D'})
        values = _utm_layer([[1.5, 2.0, -1], [4.0, 100.0, 0.5]], nodata=-1)

        result = zones.zonal_sum(values, zone_raster, name='oyster')
        expected = pandas.Series(
            [3.5, 0.0, 4.5],
            index=pandas.Index(['A', 'B', 'C'], name='zone_id'),
            name='oyster')
        pandas.testing.assert_series_equal(result, expected)

    def test_no_zones_present(self):
        """Zones: a grid outside every zone sums to an empty series."""
        from aquasuit import zones
        from aquasuit.raster import ZoneRaster

        grid = _utm_layer(numpy.ones((2, 2)))
        zone_raster = ZoneRaster(
            numpy.zeros((2, 2)), grid.geotransform, grid.projection_wkt,
            zone_ids={1: 'A'})
        result = zones.zonal_sum(grid, zone_raster)
        self.assertEqual(len(result), 0)

    def test_grid_mismatch(self):
        """Zones: values and zones must share a grid."""
        from aquasuit import zones
        from aquasuit.raster import GridMismatchError
        from aquasuit.raster import ZoneRaster

        grid = _utm_layer(numpy.ones((2, 2)))
        zone_raster = ZoneRaster(
            numpy.ones((3, 3)), grid.geotransform, grid.projection_wkt)
        with self.assertRaises(GridMismatchError):
            zones.zonal_sum(grid, zone_raster)
