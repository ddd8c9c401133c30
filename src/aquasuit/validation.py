"""Validation of model args against a ``ModelSpec``."""
import importlib
import inspect
import logging
import pprint

import numpy
import pygeoprocessing
from osgeo import gdal
from osgeo import osr

from . import gettext

LOGGER = logging.getLogger(__name__)

MESSAGES = {
    'MISSING_KEY': gettext('Key is missing from the args dict'),
    'MISSING_VALUE': gettext('Input is required but has no value'),
    'MATCHED_NO_HEADERS': gettext(
        'Expected the {header} "{header_name}" but did not find it'),
    'DUPLICATE_HEADER': gettext(
        'Expected the {header} "{header_name}" only once '
        'but found it {number} times'),
    'NOT_A_NUMBER': gettext(
        'Value "{value}" could not be interpreted as a number'),
    'WRONG_PROJECTION_UNIT': gettext(
        'Layer must be projected in this unit: '
        '"{unit_a}" but found this unit: "{unit_b}"'),
    'UNEXPECTED_ERROR': gettext('An unexpected error occurred in validation'),
    'DIR_NOT_FOUND': gettext('Directory not found'),
    'NOT_A_DIR': gettext('Path must be a directory'),
    'FILE_NOT_FOUND': gettext('File not found'),
    'INVALID_PROJECTION': gettext('Dataset must have a valid projection.'),
    'NOT_PROJECTED': gettext('Dataset must be projected in linear units.'),
    'NOT_GDAL_RASTER': gettext('File could not be opened as a GDAL raster'),
    'OVR_FILE': gettext('File found to be an overview ".ovr" file.'),
    'NOT_GDAL_VECTOR': gettext('File could not be opened as a GDAL vector'),
    'REGEXP_MISMATCH': gettext(
        "Value did not match expected pattern {regexp}"),
    'NO_PROJECTION': gettext('Spatial file {filepath} has no projection'),
    'BBOX_NOT_INTERSECT': gettext(
        'Not all of the spatial layers overlap each '
        'other. All bounding boxes must intersect: {bboxes}'),
    'NEED_PERMISSION_DIRECTORY': gettext(
        'You must have {permission} access to this directory'),
    'NEED_PERMISSION_FILE': gettext(
        'You must have {permission} access to this file'),
    'WRONG_GEOM_TYPE': gettext('Geometry type must be one of {allowed}'),
    'INVALID_RANGE': gettext(
        'The minimum {quantity} ({minimum}) must be less than the '
        'maximum {quantity} ({maximum})'),
    'NO_RASTERS_IN_DIR': gettext(
        'Directory must contain at least one {extension} raster'),
}


def get_message(key):
    return gettext(MESSAGES[key])


def _has_value(value):
    return value not in ('', None)


def get_invalid_keys(validation_warnings):
    """Set of every args key named in a list of validation warnings."""
    return {key for keys, _ in validation_warnings for key in keys}


def get_sufficient_keys(args):
    """Set of the keys of ``args`` whose value is neither ``''`` nor None."""
    return {key for key, value in args.items() if _has_value(value)}


def load_fields_from_vector(filepath, layer_id=0):
    """List the field names of one layer of a vector."""
    vector = gdal.OpenEx(filepath, gdal.OF_VECTOR)
    layer = vector.GetLayer(layer_id)
    fieldnames = [defn.GetName() for defn in layer.schema]
    layer = None
    vector = None
    return fieldnames


def _spatial_info(filepath):
    try:
        return pygeoprocessing.get_raster_info(filepath)
    except (ValueError, RuntimeError):
        return pygeoprocessing.get_vector_info(filepath)


def check_spatial_overlap(spatial_filepaths_list,
                          different_projections_ok=False):
    """Check that the bounding boxes of some spatial files all intersect.

    Args:
        spatial_filepaths_list (list): paths to GDAL rasters or vectors.
        different_projections_ok (bool): if True, bounding boxes are compared
            in WGS84 so files may be in different projections.  Files whose
            box cannot be transformed are skipped with a warning.

    Returns:
        An error message string, or ``None`` if the files overlap.
    """
    wgs84_srs = osr.SpatialReference()
    wgs84_srs.ImportFromEPSG(4326)
    wgs84_wkt = wgs84_srs.ExportToWkt()

    checked_files = []
    bounding_boxes = []
    for filepath in spatial_filepaths_list:
        info = _spatial_info(filepath)
        if info['projection_wkt'] is None:
            return get_message('NO_PROJECTION').format(filepath=filepath)

        bounding_box = info['bounding_box']
        if different_projections_ok:
            try:
                bounding_box = pygeoprocessing.transform_bounding_box(
                    bounding_box, info['projection_wkt'], wgs84_wkt)
            except (ValueError, RuntimeError) as error:
                LOGGER.debug(error)
                LOGGER.warning(
                    f'Not checking whether {filepath} overlaps the other '
                    'inputs: its bounding box cannot be transformed to '
                    'EPSG:4326')
                continue

        if all(numpy.isinf(coord) for coord in bounding_box):
            LOGGER.warning(
                f'Not checking whether {filepath} overlaps the other inputs: '
                f'its bounding box {bounding_box} is infinite')
            continue

        checked_files.append(filepath)
        bounding_boxes.append(bounding_box)

    try:
        pygeoprocessing.merge_bounding_box_list(bounding_boxes, 'intersection')
    except ValueError as error:
        LOGGER.debug(error)
        return get_message('BBOX_NOT_INTERSECT').format(
            bboxes=_format_bbox_list(checked_files, bounding_boxes))
    return None


def _format_bbox_list(file_list, bbox_list):
    """Join paths and their bounding boxes into one string."""
    return ' | '.join(
        f'{filepath}: {bbox}' for filepath, bbox in zip(file_list, bbox_list))


def _check_required(args, model_spec):
    """Sort inputs into missing, required-but-empty and empty-optional sets."""
    missing_keys = set()
    empty_required_keys = set()
    empty_optional_keys = set()
    for input_spec in model_spec.inputs:
        key = input_spec.id
        if not input_spec.required:
            if not _has_value(args.get(key)):
                empty_optional_keys.add(key)
        elif key not in args:
            missing_keys.add(key)
        elif not _has_value(args[key]):
            empty_required_keys.add(key)
    return missing_keys, empty_required_keys, empty_optional_keys


def _check_values(args, model_spec, skip_keys):
    """Run each input's own check on every provided value."""
    validation_warnings = []
    for key in set(args) - skip_keys:
        try:
            input_spec = model_spec.get_input(key)
        except KeyError:
            LOGGER.debug(f'Ignoring {key}, which is not a model input')
            continue
        try:
            message = input_spec.validate(args[key])
        except Exception:
            LOGGER.exception(f'Failed to validate {key}={args[key]}')
            message = get_message('UNEXPECTED_ERROR')
        if message:
            validation_warnings.append(([key], message))
    return validation_warnings


def _spatial_keys(model_spec):
    if isinstance(model_spec.validate_spatial_overlap, list):
        return set(model_spec.validate_spatial_overlap)
    return {input_spec.id for input_spec in model_spec.inputs
            if input_spec.type in ('raster', 'vector')}


def validate(args, model_spec):
    """Validate an args dict against a model spec.

    Inputs are checked in three passes: required inputs must be present and
    non-empty, every provided value must pass its input's check, and, if the
    model asks for it, the spatial inputs that passed must overlap.

    Args:
        args (dict): the model args.
        model_spec (ModelSpec): the spec to validate against.

    Returns:
        A list of ``(keys, message)`` tuples sorted by the first key, empty
        when the args are valid.
    """
    missing_keys, empty_required_keys, empty_optional_keys = _check_required(
        args, model_spec)
    validation_warnings = []
    if missing_keys:
        validation_warnings.append(
            (sorted(missing_keys), get_message('MISSING_KEY')))
    if empty_required_keys:
        validation_warnings.append(
            (sorted(empty_required_keys), get_message('MISSING_VALUE')))

    insufficient_keys = missing_keys | empty_required_keys | empty_optional_keys
    value_warnings = _check_values(
        args, model_spec, insufficient_keys)
    validation_warnings.extend(value_warnings)

    if model_spec.validate_spatial_overlap:
        checkable_keys = sorted(
            _spatial_keys(model_spec) - insufficient_keys -
            get_invalid_keys(value_warnings))
        checkable_keys = [key for key in checkable_keys
                          if key in args and _has_value(args[key])]
        if len(checkable_keys) >= 2:
            overlap_error = check_spatial_overlap(
                [args[key] for key in checkable_keys],
                model_spec.different_projections_ok)
            if overlap_error:
                validation_warnings.append((checkable_keys, overlap_error))

    return sorted(validation_warnings, key=lambda warning: warning[0][0])


def args_validator(validate_func):
    """Decorator for a model's ``validate(args, limit_to=None)``.

    Asserts that ``args`` is a dict with string keys and that ``limit_to`` is
    ``None`` or one of those keys.  With ``limit_to``, only that input is
    checked, against the ``MODEL_SPEC`` of the module defining
    ``validate_func``.

    Raises:
        AssertionError when the call or the decorated function does not
            have the expected form.
    """
    def _wrapped_validate_func(args, limit_to=None):
        validate_params = inspect.getfullargspec(validate_func).args
        assert validate_params == ['args', 'limit_to'], (
            f'validate has invalid parameters: parameters are: '
            f'{validate_params}.')
        assert isinstance(args, dict), 'args parameter must be a dictionary.'
        assert limit_to is None or isinstance(limit_to, str), (
            'limit_to parameter must be either a string key or None.')
        if limit_to is not None:
            assert limit_to in args, (
                f'limit_to key "{limit_to}" must exist in args.')
        assert all(isinstance(key, str) for key in args), (
            'All args keys must be strings.')

        if limit_to is None:
            LOGGER.info('Validating all args')
            warnings_ = validate_func(args)
        else:
            LOGGER.info(f'Validating {limit_to}')
            model_module = importlib.import_module(validate_func.__module__)
            input_spec = model_module.MODEL_SPEC.get_input(limit_to)
            value = args[limit_to]

            message = None
            if input_spec.required and not _has_value(value):
                message = get_message('MISSING_VALUE')
            if _has_value(value):
                message = input_spec.validate(value)
            warnings_ = [([limit_to], message)] if message else []

        LOGGER.debug(f'Validation warnings: {pprint.pformat(warnings_)}')
        return warnings_

    return _wrapped_validate_func
