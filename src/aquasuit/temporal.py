"""Reduce a time series of layers to one layer and convert its units."""
import logging

import numpy

from .raster import FLOAT_NODATA
from .raster import RasterStack
from .unit_registry import u

LOGGER = logging.getLogger(__name__)


def mean_layer(stack):
    """Per-cell arithmetic mean across the layers of a stack.

    Nodata cells are left out of the mean.  A cell that is nodata in every
    layer is nodata in the result.

    Args:
        stack (RasterStack or sequence of RasterLayer): layers on one grid.

    Returns:
        A float64 ``RasterLayer`` on the stack's grid.

    Raises:
        ValueError if the stack is empty.
    """
    if not isinstance(stack, RasterStack):
        layers = list(stack)
        if not layers:
            raise ValueError('Cannot take the mean of an empty stack')
        stack = RasterStack(layers)
    reference = stack.reference
    layers = list(stack)

    total = numpy.zeros(reference.shape, dtype=numpy.float64)
    count = numpy.zeros(reference.shape, dtype=numpy.int64)
    for layer in layers:
        valid = layer.valid_mask()
        total[valid] += layer.array[valid]
        count[valid] += 1

    result = numpy.full(reference.shape, FLOAT_NODATA, dtype=numpy.float64)
    has_data = count > 0
    result[has_data] = total[has_data] / count[has_data]
    LOGGER.debug(
        f'Averaged {len(layers)} layers; '
        f'{numpy.count_nonzero(~has_data)} cells have no data')
    return reference.with_array(result, FLOAT_NODATA)


def convert_units(layer, from_unit, to_unit):
    """Convert every valid cell of ``layer`` between two units.

    Args:
        layer (RasterLayer): layer to convert.  Not modified.
        from_unit (pint.Unit or string): units of ``layer``'s values.
        to_unit (pint.Unit or string): units of the result.

    Returns:
        A float64 ``RasterLayer``; nodata cells stay nodata.
    """
    valid = layer.valid_mask()
    result = numpy.full(layer.shape, FLOAT_NODATA, dtype=numpy.float64)
    values = u.Quantity(layer.array[valid].astype(numpy.float64), from_unit)
    result[valid] = values.to(to_unit).magnitude
    return layer.with_array(result, FLOAT_NODATA)


def kelvin_to_celsius(layer):
    return convert_units(layer, u.kelvin, u.degC)
