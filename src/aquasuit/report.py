"""Join per-zone results back onto zone identifiers and names."""
import logging

import numpy
import pandas
from osgeo import gdal
from osgeo import ogr
from osgeo import osr

LOGGER = logging.getLogger(__name__)

ZONE_ID_COLUMN = 'zone_id'
ZONE_NAME_COLUMN = 'zone_name'


def assemble_report(results, zones):
    """Build a table of suitable area per zone for one or more species.

    Args:
        results (pandas.Series or list of pandas.Series): per-zone results,
            each indexed by zone identifier and named after its species.
        zones (ZonePolygonSet): the zones to report on, in output order.

    Returns:
        ``pandas.DataFrame`` with columns ``zone_id``, ``zone_name`` and one
        column per result.  Zones missing from a result get 0.0.
    """
    if isinstance(results, pandas.Series):
        results = [results]

    report = pandas.DataFrame({
        ZONE_ID_COLUMN: zones.zone_ids,
        ZONE_NAME_COLUMN: [zone.name for zone in zones],
    })
    for position, result in enumerate(results):
        column = result.name if result.name is not None else (
            f'suitable_area_{position}')
        if column in report.columns:
            raise ValueError(f'Duplicate report column {column}')
        report[column] = report[ZONE_ID_COLUMN].map(result).fillna(
            0.0).astype(float)
    return report


def write_report_csv(report, target_path):
    report.to_csv(target_path, index=False)
    LOGGER.info(f'Wrote report table to {target_path}')


def _ogr_field_type(series):
    if pandas.api.types.is_float_dtype(series.dtype):
        return ogr.OFTReal
    if pandas.api.types.is_integer_dtype(series.dtype):
        return ogr.OFTInteger64
    return ogr.OFTString


def _ogr_value(value):
    """Convert a pandas cell into something ``Feature.SetField`` accepts."""
    if pandas.isna(value):
        return None
    if isinstance(value, numpy.generic):
        return value.item()
    return value


def write_zone_vector(zones, report, target_path):
    """Write the zones and their report rows to a GeoPackage.

    Args:
        zones (ZonePolygonSet): zones whose geometries are written.
        report (pandas.DataFrame): table from ``assemble_report``; one row
            per zone, matched on ``zone_id``.
        target_path (string): path to the ``.gpkg`` to create.

    Returns:
        None
    """
    rows = report.set_index(ZONE_ID_COLUMN, drop=False)

    driver = gdal.GetDriverByName('GPKG')
    vector = driver.Create(target_path, 0, 0, 0, gdal.GDT_Unknown)
    srs = None
    if zones.projection_wkt:
        srs = osr.SpatialReference()
        srs.ImportFromWkt(zones.projection_wkt)
    layer = vector.CreateLayer('zones', srs, ogr.wkbMultiPolygon)
    for column in report.columns:
        layer.CreateField(ogr.FieldDefn(column, _ogr_field_type(report[column])))
    layer_defn = layer.GetLayerDefn()

    layer.StartTransaction()
    for zone in zones:
        feature = ogr.Feature(layer_defn)
        geometry = ogr.ForceToMultiPolygon(
            ogr.CreateGeometryFromWkb(zone.geometry.wkb))
        feature.SetGeometry(geometry)
        row = rows.loc[zone.zone_id]
        for column in report.columns:
            value = _ogr_value(row[column])
            if value is None:
                feature.SetFieldNull(column)
            else:
                feature.SetField(column, value)
        layer.CreateFeature(feature)
        feature = None
    layer.CommitTransaction()

    layer = None
    vector = None
    LOGGER.info(f'Wrote zone vector to {target_path}')
