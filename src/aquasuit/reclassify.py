"""Reclassify continuous layers into binary suitability layers."""
import logging

import numpy

from .raster import BYTE_NODATA
from .raster import multiply

LOGGER = logging.getLogger(__name__)

SUITABLE = 1
UNSUITABLE = 0


class InvalidRangeError(ValueError):
    """Raised when a tolerance range has a minimum not below its maximum."""


def check_range(minimum, maximum, quantity='value'):
    """Raise ``InvalidRangeError`` unless ``minimum < maximum``."""
    if not minimum < maximum:
        raise InvalidRangeError(
            f'The minimum {quantity} ({minimum}) must be less than the '
            f'maximum {quantity} ({maximum})')


class ReclassificationRule(object):
    """Contiguous half-open intervals ``[lower, upper)`` mapped to classes.

    The intervals must be given in ascending order, start at ``-inf``, end at
    ``inf`` and meet without gaps or overlaps, so every finite value falls in
    exactly one interval.  Adjacent bounds are compared as exact floats: an
    upper bound of ``0.1 + 0.2`` does not meet a lower bound of ``0.3``.
    """

    def __init__(self, intervals):
        intervals = [
            (float(lower), float(upper), int(value))
            for lower, upper, value in intervals]
        if not intervals:
            raise ValueError('A reclassification rule needs an interval')
        if intervals[0][0] != -numpy.inf or intervals[-1][1] != numpy.inf:
            raise ValueError(
                'Reclassification intervals must span -inf to inf')
        for lower, upper, value in intervals:
            if not lower < upper:
                raise ValueError(f'Empty interval [{lower}, {upper})')
            if value not in (SUITABLE, UNSUITABLE):
                raise ValueError(
                    f'Interval class must be {SUITABLE} or {UNSUITABLE}, '
                    f'got {value}')
        for (_, upper, _), (lower, _, _) in zip(intervals, intervals[1:]):
            if upper != lower:
                raise ValueError(
                    f'Intervals must be contiguous: {upper} != {lower}')

        self.intervals = tuple(intervals)
        self._breaks = numpy.array([lower for lower, _, _ in intervals[1:]])
        self._classes = numpy.array(
            [value for _, _, value in intervals], dtype=numpy.uint8)

    def __repr__(self):
        return f'ReclassificationRule({list(self.intervals)})'

    @classmethod
    def from_range(cls, minimum, maximum):
        """Rule that marks ``[minimum, maximum)`` suitable.

        Raises:
            InvalidRangeError if ``minimum >= maximum``.
        """
        check_range(minimum, maximum)
        return cls([
            (-numpy.inf, minimum, UNSUITABLE),
            (minimum, maximum, SUITABLE),
            (maximum, numpy.inf, UNSUITABLE)])

    def classify(self, values):
        """Class of each value in ``values`` as a uint8 array."""
        # side='right' puts a value equal to a break in the interval that
        # starts there.
        index = numpy.searchsorted(
            self._breaks, numpy.asarray(values, dtype=numpy.float64),
            side='right')
        return self._classes[index]


def reclassify(layer, rule):
    """Map a continuous layer to a binary suitability layer.

    Cells whose value falls in a suitable interval become ``SUITABLE``.
    Unsuitable cells and input nodata cells become nodata.

    Args:
        layer (RasterLayer): the layer to reclassify.
        rule (ReclassificationRule): the intervals to apply.

    Returns:
        A uint8 ``RasterLayer`` with values in {1, ``BYTE_NODATA``}.
    """
    valid = layer.valid_mask()
    result = numpy.full(layer.shape, BYTE_NODATA, dtype=numpy.uint8)
    suitable = numpy.zeros(layer.shape, dtype=bool)
    suitable[valid] = rule.classify(layer.array[valid]) == SUITABLE
    result[suitable] = SUITABLE
    LOGGER.debug(
        f'{numpy.count_nonzero(suitable)} of {layer.array.size} cells '
        f'suitable under {rule!r}')
    return layer.with_array(result, BYTE_NODATA)


def combine(*layers):
    """Cell-wise logical AND of binary suitability layers.

    Raises:
        ValueError if no layers are given.
        GridMismatchError if the layers are not on the same grid.
    """
    return multiply(
        *layers, target_nodata=BYTE_NODATA, target_dtype=numpy.uint8)
