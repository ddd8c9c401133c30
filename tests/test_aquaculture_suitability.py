# coding=UTF-8
"""Module for Regression Testing the Aquaculture Suitability model."""
import os
import shutil
import tempfile
import unittest
import warnings

import numpy
import numpy.testing
import pandas
import pygeoprocessing
import shapely.geometry
from osgeo import gdal
from osgeo import ogr
from osgeo import osr

_ORIGIN = (460000, 4930000)
_PIXEL = 1000
_N = 20


def _utm_wkt():
    srs = osr.SpatialReference()
    srs.ImportFromEPSG(32610)  # UTM zone 10N
    return srs.ExportToWkt()


def _grid_layer(array, nodata=-1):
    from aquasuit.raster import RasterLayer
    return RasterLayer(
        numpy.array(array, dtype=numpy.float32),
        (_ORIGIN[0], _PIXEL, 0, _ORIGIN[1], 0, -_PIXEL), _utm_wkt(),
        nodata=nodata)


def _grid_box(col_min, row_min, col_max, row_max):
    return shapely.geometry.box(
        _ORIGIN[0] + col_min * _PIXEL, _ORIGIN[1] - row_max * _PIXEL,
        _ORIGIN[0] + col_max * _PIXEL, _ORIGIN[1] - row_min * _PIXEL)


def _oyster_inputs():
    """Two years of SST and a depth layer with a 10x10 suitable block.

    The upper left 10x10 cells are 16.85 C on average and 30 m deep; every
    other cell is too cold.  Cells are 1 km^2.
    """
    warm = numpy.full((_N, _N), 280.0)
    warm[:10, :10] = 289.0
    warmer = numpy.full((_N, _N), 280.0)
    warmer[:10, :10] = 291.0
    sst_layers = [_grid_layer(warm), _grid_layer(warmer)]
    depth_layer = _grid_layer(numpy.full((_N, _N), -30.0), nodata=9999)
    return sst_layers, depth_layer


def _zone_set():
    from aquasuit.raster import ZonePolygonSet
    return ZonePolygonSet([
        ('north', 'North', _grid_box(0, 0, _N, 10)),
        ('south', 'South', _grid_box(0, 10, _N, _N)),
    ], _utm_wkt())


class FindSuitableAreaTests(unittest.TestCase):
    """Tests for the in-memory pipeline."""

    def test_oyster_scenario(self):
        """Aquaculture: 100 suitable 1 km^2 cells sum to 100 km^2."""
        from aquasuit import aquaculture_suitability

        sst_layers, depth_layer = _oyster_inputs()
        result = aquaculture_suitability.find_suitable_area(
            11, 30, -70, 0, 'oyster', sst_layers=sst_layers,
            depth_layer=depth_layer, zones=_zone_set())

        self.assertEqual(result.name, 'oyster')
        self.assertEqual(result.index.name, 'zone_id')
        self.assertAlmostEqual(result['north'], 100.0)
        self.assertAlmostEqual(result['south'], 0.0)
        self.assertEqual(len(result), 2)

    def test_inputs_unchanged(self):
        """Aquaculture: inputs are untouched, even when zones are reprojected."""
        from aquasuit import aquaculture_suitability
        from aquasuit import alignment

        srs = osr.SpatialReference()
        srs.ImportFromEPSG(4326)
        geographic_zones = alignment.reproject_zones(
            _zone_set(), srs.ExportToWkt())
        sst_layers, depth_layer = _oyster_inputs()

        sst_before = [layer.array.copy() for layer in sst_layers]
        depth_before = depth_layer.array.copy()
        zones_before = [zone.geometry.wkb for zone in geographic_zones]
        projection_before = geographic_zones.projection_wkt

        result = aquaculture_suitability.find_suitable_area(
            11, 30, -70, 0, 'oyster', sst_layers=sst_layers,
            depth_layer=depth_layer, zones=geographic_zones)

        for layer, array in zip(sst_layers, sst_before):
            numpy.testing.assert_array_equal(layer.array, array)
        numpy.testing.assert_array_equal(depth_layer.array, depth_before)
        self.assertEqual(
            [zone.geometry.wkb for zone in geographic_zones], zones_before)
        self.assertEqual(geographic_zones.projection_wkt, projection_before)
        self.assertAlmostEqual(result['north'], 100.0)

    def test_depth_out_of_range(self):
        """Aquaculture: cells too deep are not suitable."""
        from aquasuit import aquaculture_suitability

        sst_layers, _ = _oyster_inputs()
        depth = numpy.full((_N, _N), -30.0)
        depth[:5, :10] = -100.0
        result = aquaculture_suitability.find_suitable_area(
            11, 30, -70, 0, 'oyster', sst_layers=sst_layers,
            depth_layer=_grid_layer(depth), zones=_zone_set())
        self.assertAlmostEqual(result['north'], 50.0)

    def test_inverted_range(self):
        """Aquaculture: inverted ranges fail before any raster work."""
        from aquasuit import aquaculture_suitability

        sst_layers, depth_layer = _oyster_inputs()
        with self.assertRaises(aquaculture_suitability.InvalidRangeError):
            aquaculture_suitability.find_suitable_area(
                30, 11, -70, 0, 'oyster', sst_layers=sst_layers,
                depth_layer=depth_layer, zones=_zone_set())
        # no layers at all: the range check still comes first
        with self.assertRaises(aquaculture_suitability.InvalidRangeError):
            aquaculture_suitability.find_suitable_area(
                11, 30, 0, -70, 'oyster', sst_layers=[],
                depth_layer=None, zones=_zone_set())

    def test_no_suitable_area_warns(self):
        """Aquaculture: no suitable cell gives zeros and a warning."""
        from aquasuit import aquaculture_suitability

        sst_layers, depth_layer = _oyster_inputs()
        with self.assertWarns(aquaculture_suitability.EmptyResultWarning):
            result = aquaculture_suitability.find_suitable_area(
                40, 50, -70, 0, 'oyster', sst_layers=sst_layers,
                depth_layer=depth_layer, zones=_zone_set())
        self.assertEqual(list(result.index), ['north', 'south'])
        numpy.testing.assert_array_equal(result.values, [0.0, 0.0])

    def test_monotonic_in_range_width(self):
        """Aquaculture: widening a range never shrinks suitable area."""
        from aquasuit import aquaculture_suitability

        rows, cols = numpy.mgrid[0:_N, 0:_N]
        # temperature rises to the east, depth increases to the south
        sst = 278.15 + cols * 1.5
        depth = -5.0 * (rows + 1)
        sst_layers = [_grid_layer(sst)]
        depth_layer = _grid_layer(depth)

        previous_total = -1
        with warnings.catch_warnings():
            warnings.simplefilter(
                'ignore', aquaculture_suitability.EmptyResultWarning)
            for widen in range(0, 12, 2):
                result = aquaculture_suitability.find_suitable_area(
                    15 - widen, 16 + widen, -40 - 5 * widen, -20 + widen,
                    'widening', sst_layers=sst_layers,
                    depth_layer=depth_layer, zones=_zone_set())
                total = result.sum()
                self.assertGreaterEqual(total, previous_total)
                previous_total = total
        self.assertGreater(previous_total, 0)

    def test_depth_on_other_grid(self):
        """Aquaculture: depth on a finer grid is aligned to the SST grid."""
        from aquasuit import aquaculture_suitability
        from aquasuit.raster import RasterLayer

        sst_layers, _ = _oyster_inputs()
        fine_depth = RasterLayer(
            numpy.full((2 * _N, 2 * _N), -30.0, dtype=numpy.float32),
            (_ORIGIN[0], _PIXEL / 2, 0, _ORIGIN[1], 0, -_PIXEL / 2),
            _utm_wkt(), nodata=9999)
        result = aquaculture_suitability.find_suitable_area(
            11, 30, -70, 0, 'oyster', sst_layers=sst_layers,
            depth_layer=fine_depth, zones=_zone_set())
        self.assertAlmostEqual(result['north'], 100.0)

    def test_depth_without_overlap(self):
        """Aquaculture: depth that misses the SST grid is an error."""
        from aquasuit import aquaculture_suitability
        from aquasuit.alignment import AlignmentError
        from aquasuit.raster import RasterLayer

        sst_layers, _ = _oyster_inputs()
        far_depth = RasterLayer(
            numpy.full((2, 2), -30.0), (0, _PIXEL, 0, 0, 0, -_PIXEL),
            _utm_wkt(), nodata=9999)
        with self.assertRaises(AlignmentError):
            aquaculture_suitability.find_suitable_area(
                11, 30, -70, 0, 'oyster', sst_layers=sst_layers,
                depth_layer=far_depth, zones=_zone_set())


def _write_raster(array, target_path, nodata=-1):
    pygeoprocessing.numpy_array_to_raster(
        numpy.array(array, dtype=numpy.float32), nodata, (_PIXEL, -_PIXEL),
        _ORIGIN, _utm_wkt(), target_path)


def _write_zones(target_path):
    pygeoprocessing.shapely_geometry_to_vector(
        [_grid_box(0, 0, _N, 10), _grid_box(0, 10, _N, _N)],
        target_path, _utm_wkt(), 'GPKG',
        fields={'zone_code': ogr.OFTString, 'zone_name': ogr.OFTString},
        attribute_list=[
            {'zone_code': 'north', 'zone_name': 'North'},
            {'zone_code': 'south', 'zone_name': 'South'}],
        ogr_geom_type=ogr.wkbPolygon)


def _make_args(base_dir):
    """Write model inputs under ``base_dir`` and return an args dict."""
    data_dir = os.path.join(base_dir, 'data')
    sst_dir = os.path.join(data_dir, 'sst')
    os.makedirs(sst_dir)

    sst_layers, depth_layer = _oyster_inputs()
    for year, layer in zip((2019, 2020), sst_layers):
        _write_raster(layer.array, os.path.join(sst_dir, f'{year}.tif'))
    # not a raster, so not part of the stack
    with open(os.path.join(sst_dir, 'README.txt'), 'w') as readme:
        readme.write('yearly mean SST in kelvin')

    depth_path = os.path.join(data_dir, 'depth.tif')
    _write_raster(depth_layer.array, depth_path, nodata=9999)
    zones_path = os.path.join(data_dir, 'zones.gpkg')
    _write_zones(zones_path)

    return {
        'workspace_dir': os.path.join(base_dir, 'workspace'),
        'results_suffix': 'test',
        'sst_dir': sst_dir,
        'depth_path': depth_path,
        'zones_vector_path': zones_path,
        'zone_id_field': 'zone_code',
        'zone_name_field': 'zone_name',
        'species_label': 'oyster',
        'min_temp': '11',
        'max_temp': 30,
        'min_depth': -70,
        'max_depth': 0,
    }


class AquacultureSuitabilityModelTests(unittest.TestCase):
    """Tests for the Aquaculture Suitability model runner."""

    def setUp(self):
        """Override setUp function to create temp workspace directory."""
        self.workspace_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Override tearDown function to remove temporary directory."""
        shutil.rmtree(self.workspace_dir)

    def test_execute(self):
        """Aquaculture: full model run."""
        from aquasuit import aquaculture_suitability

        args = _make_args(self.workspace_dir)
        registry = aquaculture_suitability.execute(args)

        workspace = args['workspace_dir']
        csv_path = os.path.join(workspace, 'suitable_area_per_zone_test.csv')
        self.assertEqual(
            registry['suitable_area_per_zone_csv'], os.path.abspath(csv_path))
        for key in ('suitability', 'zones_raster', 'mean_sst',
                    'aligned_depth', 'suitable_area_per_zone_gpkg'):
            self.assertTrue(os.path.exists(registry[key]), key)
        self.assertTrue(os.path.exists(
            os.path.join(workspace, 'intermediate', 'zones_test.tif')))

        table = pandas.read_csv(csv_path)
        self.assertEqual(
            list(table.columns), ['zone_id', 'zone_name', 'oyster'])
        self.assertEqual(list(table['zone_id']), ['north', 'south'])
        numpy.testing.assert_allclose(table['oyster'], [100.0, 0.0])

        suitability = pygeoprocessing.raster_to_numpy_array(
            registry['suitability'])
        self.assertEqual(numpy.count_nonzero(suitability == 1), 100)

        vector = gdal.OpenEx(
            registry['suitable_area_per_zone_gpkg'], gdal.OF_VECTOR)
        layer = vector.GetLayer()
        areas = {feature.GetField('zone_id'): feature.GetField('oyster')
                 for feature in layer}
        layer = None
        vector = None
        self.assertAlmostEqual(areas['north'], 100.0)

    def test_execute_inverted_range(self):
        """Aquaculture: execute rejects an inverted depth range."""
        from aquasuit import aquaculture_suitability

        args = _make_args(self.workspace_dir)
        args['min_depth'] = 0
        args['max_depth'] = -70
        with self.assertRaises(aquaculture_suitability.InvalidRangeError):
            aquaculture_suitability.execute(args)

    def test_model_spec_execute_logfile(self):
        """Aquaculture: running through MODEL_SPEC writes a logfile."""
        from aquasuit import aquaculture_suitability

        args = _make_args(self.workspace_dir)
        aquaculture_suitability.MODEL_SPEC.execute(
            args, create_logfile=True, save_file_registry=True)

        workspace_files = os.listdir(args['workspace_dir'])
        self.assertTrue(any(
            filename.startswith('aquasuit-aquaculture_suitability-log-')
            for filename in workspace_files))
        self.assertIn('file_registry_test.json', workspace_files)


class AquacultureSuitabilityValidationTests(unittest.TestCase):
    """Tests for Aquaculture Suitability validation."""

    def setUp(self):
        self.workspace_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.workspace_dir)

    def test_missing_keys(self):
        """Aquaculture Validate: assert missing required keys."""
        from aquasuit import aquaculture_suitability
        from aquasuit import validation

        validation_errors = aquaculture_suitability.validate({})
        invalid_keys = validation.get_invalid_keys(validation_errors)
        expected_missing_keys = set([
            'workspace_dir', 'sst_dir', 'depth_path', 'zones_vector_path',
            'zone_id_field', 'species_label', 'min_temp', 'max_temp',
            'min_depth', 'max_depth'])
        self.assertEqual(invalid_keys, expected_missing_keys)

    def test_valid_args(self):
        """Aquaculture Validate: a complete datastack has no warnings."""
        from aquasuit import aquaculture_suitability

        args = _make_args(self.workspace_dir)
        self.assertEqual(aquaculture_suitability.validate(args), [])

    def test_inverted_ranges(self):
        """Aquaculture Validate: inverted ranges are reported."""
        from aquasuit import aquaculture_suitability
        from aquasuit import validation

        args = _make_args(self.workspace_dir)
        args['min_temp'] = 30
        args['max_temp'] = 11
        validation_warnings = aquaculture_suitability.validate(args)

        expected_message = validation.get_message('INVALID_RANGE').format(
            quantity='temperature', minimum=30.0, maximum=11.0)
        self.assertEqual(
            validation_warnings, [(['min_temp', 'max_temp'], expected_message)])

    def test_missing_zone_field(self):
        """Aquaculture Validate: the zone id field must be in the vector."""
        from aquasuit import aquaculture_suitability
        from aquasuit import validation

        args = _make_args(self.workspace_dir)
        args['zone_id_field'] = 'MRGID'
        validation_warnings = aquaculture_suitability.validate(args)

        expected_message = validation.get_message(
            'MATCHED_NO_HEADERS').format(header='field', header_name='MRGID')
        self.assertEqual(
            validation_warnings, [(['zone_id_field'], expected_message)])

    def test_empty_sst_dir(self):
        """Aquaculture Validate: the SST directory must hold rasters."""
        from aquasuit import aquaculture_suitability
        from aquasuit import validation

        args = _make_args(self.workspace_dir)
        args['sst_dir'] = os.path.join(self.workspace_dir, 'empty')
        os.makedirs(args['sst_dir'])
        validation_warnings = aquaculture_suitability.validate(args)

        self.assertEqual(validation_warnings, [(
            ['sst_dir'],
            validation.get_message('NO_RASTERS_IN_DIR').format(
                extension='.tif'))])

    def test_limit_to(self):
        """Aquaculture Validate: a single input can be validated."""
        from aquasuit import aquaculture_suitability
        from aquasuit import validation

        args = {'min_temp': 'warm', 'max_temp': 30}
        validation_warnings = aquaculture_suitability.validate(
            args, limit_to='min_temp')
        self.assertEqual(validation_warnings, [(
            ['min_temp'],
            validation.get_message('NOT_A_NUMBER').format(value='warm'))])
