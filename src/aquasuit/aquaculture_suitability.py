# coding=UTF-8
"""Aquaculture suitability by sea-surface temperature and depth."""
import collections
import logging
import os
import warnings

import numpy

from . import alignment
from . import gettext
from . import reclassify
from . import report
from . import spec
from . import temporal
from . import validation
from . import zones
from .raster import RasterLayer
from .raster import ZonePolygonSet
from .reclassify import InvalidRangeError  # noqa: F401
from .unit_registry import u

LOGGER = logging.getLogger(__name__)

_RASTER_EXTENSIONS = ('.tif', '.tiff')

MODEL_SPEC = spec.ModelSpec(
    model_id="aquaculture_suitability",
    model_title=gettext("Aquaculture Suitability"),
    validate_spatial_overlap=True,
    different_projections_ok=True,
    aliases=("aquasuit",),
    module_name=__name__,
    input_field_order=[
        ["workspace_dir", "results_suffix"],
        ["sst_dir", "depth_path"],
        ["zones_vector_path", "zone_id_field", "zone_name_field"],
        ["species_label", "min_temp", "max_temp", "min_depth", "max_depth"]
    ],
    inputs=[
        spec.WORKSPACE,
        spec.SUFFIX,
        spec.DirectoryInput(
            id="sst_dir",
            name=gettext("sea surface temperature directory"),
            about=gettext(
                "Directory of single-band GeoTIFFs of mean sea surface"
                " temperature, one per period (for example one per year)."
                " All rasters in the directory are averaged cell by cell, in"
                " sorted filename order. The first raster defines the grid"
                " of every output."
            ),
            contents=[
                spec.SingleBandRasterInput(
                    id="[PERIOD].tif",
                    about=gettext("Mean sea surface temperature for a period."),
                    data_type=float,
                    units=u.kelvin
                )
            ],
            permissions="r"
        ),
        spec.SingleBandRasterInput(
            id="depth_path",
            name=gettext("depth"),
            about=gettext(
                "Bathymetry raster. Values are elevation relative to sea"
                " level, negative below the surface. It is aligned to the"
                " temperature grid by nearest neighbour resampling."
            ),
            data_type=float,
            units=u.meter
        ),
        spec.VectorInput(
            id="zones_vector_path",
            name=gettext("zones"),
            about=gettext(
                "Polygons of the maritime zones over which suitable area is"
                " summed, such as exclusive economic zones."
            ),
            geometry_types=spec.POLYGONS,
            fields=[]
        ),
        spec.StringInput(
            id="zone_id_field",
            name=gettext("zone ID field"),
            about=gettext(
                "Field of the zones vector that holds a unique identifier"
                " for each zone."
            )
        ),
        spec.StringInput(
            id="zone_name_field",
            name=gettext("zone name field"),
            about=gettext(
                "Field of the zones vector that holds a display name for"
                " each zone."
            ),
            required=False
        ),
        spec.StringInput(
            id="species_label",
            name=gettext("species label"),
            about=gettext(
                "Name of the species being assessed. It is used as the name"
                " of the area column in the results."
            ),
            regexp="[a-zA-Z0-9_ -]+"
        ),
        spec.NumberInput(
            id="min_temp",
            name=gettext("minimum temperature"),
            about=gettext(
                "Lowest mean sea surface temperature the species tolerates."
                " Cells at exactly this temperature are suitable."
            ),
            units=u.degC
        ),
        spec.NumberInput(
            id="max_temp",
            name=gettext("maximum temperature"),
            about=gettext(
                "Highest mean sea surface temperature the species tolerates."
                " Cells at exactly this temperature are not suitable."
            ),
            units=u.degC
        ),
        spec.NumberInput(
            id="min_depth",
            name=gettext("minimum depth"),
            about=gettext(
                "Lowest elevation relative to sea level at which the species"
                " can be farmed, for example -70 for 70 meters below the"
                " surface."
            ),
            units=u.meter
        ),
        spec.NumberInput(
            id="max_depth",
            name=gettext("maximum depth"),
            about=gettext(
                "Highest elevation relative to sea level at which the"
                " species can be farmed. Cells at exactly this elevation are"
                " not suitable."
            ),
            units=u.meter
        )
    ],
    outputs=[
        spec.SingleBandRasterOutput(
            id="suitability",
            path="suitability.tif",
            about=gettext(
                "Cells where both the mean temperature and the depth are in"
                " range have the value 1. All other cells are nodata."
            ),
            data_type=int,
            units=None
        ),
        spec.SingleBandRasterOutput(
            id="zones_raster",
            path="intermediate/zones.tif",
            about=gettext(
                "Zone polygons rasterized onto the temperature grid. Each"
                " cell holds the 1-based position of its zone in the zones"
                " vector."
            ),
            data_type=int,
            units=None
        ),
        spec.SingleBandRasterOutput(
            id="mean_sst",
            path="intermediate/mean_sst.tif",
            about=gettext("Mean sea surface temperature across all periods."),
            data_type=float,
            units=u.degC
        ),
        spec.SingleBandRasterOutput(
            id="aligned_depth",
            path="intermediate/aligned_depth.tif",
            about=gettext("Depth resampled to the temperature grid."),
            data_type=float,
            units=u.meter
        ),
        spec.CSVOutput(
            id="suitable_area_per_zone_csv",
            path="suitable_area_per_zone.csv",
            about=gettext("Suitable area in each zone."),
            index_col="zone_id",
            columns=[
                spec.StringOutput(
                    id="zone_id",
                    about=gettext("Zone identifier.")
                ),
                spec.StringOutput(
                    id="zone_name",
                    about=gettext("Zone display name, if a name field was given.")
                ),
                spec.NumberOutput(
                    id="[SPECIES]",
                    about=gettext(
                        "Suitable area in the zone for the species. The"
                        " column is named after the species label."),
                    units=u.kilometer ** 2
                )
            ]
        ),
        spec.VectorOutput(
            id="suitable_area_per_zone_gpkg",
            path="suitable_area_per_zone.gpkg",
            about=gettext(
                "Zone polygons with their suitable area, for mapping."),
            geometry_types=spec.MULTIPOLYGON,
            fields=[
                spec.StringOutput(
                    id="zone_id",
                    about=gettext("Zone identifier.")
                ),
                spec.StringOutput(
                    id="zone_name",
                    about=gettext("Zone display name.")
                ),
                spec.NumberOutput(
                    id="[SPECIES]",
                    about=gettext("Suitable area in the zone for the species."),
                    units=u.kilometer ** 2
                )
            ]
        )
    ]
)


class EmptyResultWarning(UserWarning):
    """Issued when no cell of any zone is suitable."""


_PipelineResult = collections.namedtuple(
    '_PipelineResult',
    ['table', 'mean_sst', 'aligned_depth', 'suitability', 'zone_raster'])


def _run_pipeline(min_temp, max_temp, min_depth, max_depth, species_label,
                  sst_layers, depth_layer, zone_polygons):
    reclassify.check_range(min_temp, max_temp, 'temperature')
    reclassify.check_range(min_depth, max_depth, 'depth')
    temp_rule = reclassify.ReclassificationRule.from_range(min_temp, max_temp)
    depth_rule = reclassify.ReclassificationRule.from_range(
        min_depth, max_depth)

    LOGGER.info('Averaging sea surface temperature')
    sst_stack = alignment.build_stack(sst_layers)
    mean_sst = temporal.kelvin_to_celsius(temporal.mean_layer(sst_stack))

    LOGGER.info('Aligning depth to the temperature grid')
    aligned_depth = alignment.align_layer(mean_sst, depth_layer)

    LOGGER.info('Reclassifying temperature and depth')
    suitability = reclassify.combine(
        reclassify.reclassify(mean_sst, temp_rule),
        reclassify.reclassify(aligned_depth, depth_rule))

    LOGGER.info('Summing suitable area per zone')
    zone_raster = zones.rasterize_zones(zone_polygons, suitability)
    suitable_area = zones.cell_area(suitability, mask=suitability)
    table = zones.zonal_sum(suitable_area, zone_raster, name=species_label)

    if not (table > 0).any():
        warnings.warn(
            f'No suitable area was found for {species_label} in any zone',
            EmptyResultWarning)

    return _PipelineResult(
        table, mean_sst, aligned_depth, suitability, zone_raster)


def find_suitable_area(min_temp, max_temp, min_depth, max_depth,
                       species_label, *, sst_layers, depth_layer, zones):
    """Sum the area suitable for a species within each zone.

    A cell is suitable when its mean sea surface temperature is in
    ``[min_temp, max_temp)`` and its depth is in ``[min_depth, max_depth)``.

    Args:
        min_temp (float): lowest tolerated temperature in degrees Celsius.
        max_temp (float): temperature, in degrees Celsius, at which the
            species stops being suitable.
        min_depth (float): lowest tolerated elevation in meters, negative
            below sea level.
        max_depth (float): elevation in meters at which cells stop being
            suitable.
        species_label (string): name of the returned series.
        sst_layers (sequence of RasterLayer): temperature layers in kelvin,
            one per period.  The first defines the output grid.
        depth_layer (RasterLayer): depth in meters.
        zones (ZonePolygonSet): zones to sum over.

    Returns:
        ``pandas.Series`` of suitable area in km^2 indexed by zone
        identifier, with one entry per zone that covers the grid.

    Raises:
        InvalidRangeError: if a minimum is not below its maximum.  This is
            checked before any raster is processed.
        AlignmentError: if the depth layer does not overlap the temperature
            grid.
    """
    return _run_pipeline(
        min_temp, max_temp, min_depth, max_depth, species_label,
        sst_layers, depth_layer, zones).table


def _list_sst_rasters(sst_dir):
    """Raster paths directly inside ``sst_dir`` in sorted filename order."""
    return [
        os.path.join(sst_dir, filename)
        for filename in sorted(os.listdir(sst_dir))
        if os.path.splitext(filename)[1].lower() in _RASTER_EXTENSIONS and
        os.path.isfile(os.path.join(sst_dir, filename))]


def execute(args):
    """Aquaculture Suitability.

    Find the cells whose mean sea surface temperature and depth are both
    within a species' tolerance and sum their area within each zone.

    Args:
        args['workspace_dir'] (string): a path to the directory that will
            hold the outputs.
        args['results_suffix'] (string): appended to any output file name.
        args['sst_dir'] (string): directory of sea surface temperature
            GeoTIFFs in kelvin.
        args['depth_path'] (string): path to a bathymetry raster in meters.
        args['zones_vector_path'] (string): path to a polygon vector of
            zones.
        args['zone_id_field'] (string): field holding zone identifiers.
        args['zone_name_field'] (string): optional field holding zone names.
        args['species_label'] (string): name of the species.
        args['min_temp'] (number): minimum temperature in degrees Celsius.
        args['max_temp'] (number): maximum temperature in degrees Celsius.
        args['min_depth'] (number): minimum depth in meters.
        args['max_depth'] (number): maximum depth in meters.

    Returns:
        File registry dictionary mapping MODEL_SPEC output ids to absolute paths
    """
    args, file_registry = MODEL_SPEC.setup(args)

    reclassify.check_range(args['min_temp'], args['max_temp'], 'temperature')
    reclassify.check_range(args['min_depth'], args['max_depth'], 'depth')

    sst_paths = _list_sst_rasters(args['sst_dir'])
    if not sst_paths:
        raise ValueError(
            f'No sea surface temperature rasters found in {args["sst_dir"]}')
    LOGGER.info(f'Found {len(sst_paths)} temperature rasters')

    sst_layers = [RasterLayer.from_path(path) for path in sst_paths]
    depth_layer = RasterLayer.from_path(args['depth_path'])
    zone_polygons = ZonePolygonSet.from_vector(
        args['zones_vector_path'], args['zone_id_field'],
        args['zone_name_field'])

    with warnings.catch_warnings():
        warnings.simplefilter('always', EmptyResultWarning)
        result = _run_pipeline(
            args['min_temp'], args['max_temp'],
            args['min_depth'], args['max_depth'], args['species_label'],
            sst_layers, depth_layer, zone_polygons)

    result.mean_sst.to_path(file_registry['mean_sst'])
    result.aligned_depth.to_path(file_registry['aligned_depth'])
    result.suitability.to_path(file_registry['suitability'])
    result.zone_raster.to_path(file_registry['zones_raster'])

    area_report = report.assemble_report(result.table, zone_polygons)
    report.write_report_csv(
        area_report, file_registry['suitable_area_per_zone_csv'])
    report.write_zone_vector(
        zone_polygons, area_report,
        file_registry['suitable_area_per_zone_gpkg'])

    LOGGER.info(
        f'Total suitable area for {args["species_label"]}: '
        f'{numpy.sum(result.table.values):.2f} km^2')
    return file_registry.registry


@validation.args_validator
def validate(args, limit_to=None):
    """Validate args to ensure they conform to `execute`'s contract.

    Args:
        args (dict): dictionary of key(str)/value pairs where keys and
            values are specified in `execute` docstring.
        limit_to (str): (optional) if not None indicates that validation
            should only occur on the args[limit_to] value. The intent that
            individual key validation could be significantly less expensive
            than validating the entire `args` dictionary.

    Returns:
        list of ([invalid key_a, invalid_key_b, ...], 'warning/error message')
            tuples. Where an entry indicates that the invalid keys caused
            the error message in the second part of the tuple. This should
            be an empty list if validation succeeds.
    """
    validation_warnings = validation.validate(args, MODEL_SPEC)
    invalid_keys = validation.get_invalid_keys(validation_warnings)
    sufficient_keys = validation.get_sufficient_keys(args)
    valid_sufficient_keys = sufficient_keys - invalid_keys

    for min_key, max_key, quantity in (
            ('min_temp', 'max_temp', gettext('temperature')),
            ('min_depth', 'max_depth', gettext('depth'))):
        if {min_key, max_key}.issubset(valid_sufficient_keys):
            minimum = float(args[min_key])
            maximum = float(args[max_key])
            if not minimum < maximum:
                validation_warnings.append((
                    [min_key, max_key],
                    validation.get_message('INVALID_RANGE').format(
                        quantity=quantity, minimum=minimum,
                        maximum=maximum)))

    if 'sst_dir' in valid_sufficient_keys:
        if not _list_sst_rasters(args['sst_dir']):
            validation_warnings.append((
                ['sst_dir'],
                validation.get_message('NO_RASTERS_IN_DIR').format(
                    extension='.tif')))

    if {'zones_vector_path', 'zone_id_field'}.issubset(valid_sufficient_keys):
        fieldnames = validation.load_fields_from_vector(
            args['zones_vector_path'])
        for field_key in ('zone_id_field', 'zone_name_field'):
            if field_key not in valid_sufficient_keys:
                continue
            field_warning = spec.check_headers(
                [args[field_key]], fieldnames, 'field')
            if field_warning:
                validation_warnings.append(([field_key], field_warning))

    return sorted(validation_warnings, key=lambda w: w[0][0])
