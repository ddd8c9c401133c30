"""Logging, workspace and small helpers shared across aquasuit."""
import contextlib
import logging
import os
import platform
import time
from datetime import datetime

from osgeo import gdal
from osgeo import osr

import aquasuit


LOGGER = logging.getLogger(__name__)
_OSGEO_LOGGER = logging.getLogger('osgeo')
LOG_FMT = (
    "%(asctime)s "
    "(%(name)s) "
    "%(module)s.%(funcName)s(%(lineno)d) "
    "%(levelname)s %(message)s")

# python logging has no level between GDAL's CE_None and CE_Debug, and GDAL
# has no INFO.
GDAL_ERROR_LEVELS = {
    gdal.CE_None: logging.NOTSET,
    gdal.CE_Debug: logging.DEBUG,
    gdal.CE_Warning: logging.WARNING,
    gdal.CE_Failure: logging.ERROR,
    gdal.CE_Fatal: logging.CRITICAL,
}

# x/y (lon/lat) order for geographic systems, as raster geotransforms use.
DEFAULT_OSR_AXIS_MAPPING_STRATEGY = osr.OAMS_TRADITIONAL_GIS_ORDER

_GDAL_HANDLER_PARAMS = ('err_level', 'err_no', 'err_msg')


def _log_gdal_errors(*args, **kwargs):
    """GDAL error handler that forwards messages to the ``osgeo`` logger.

    GDAL calls this with ``(err_level, err_no, err_msg)``.  Messages that
    ``gdal.UseExceptions()`` does not raise (warnings, debug output) would
    otherwise go to stderr.  A call with any other signature is logged as an
    error instead of raising inside GDAL.
    """
    if len(args) + len(kwargs) != 3:
        LOGGER.error(
            '_log_gdal_errors was called with an incorrect number of '
            f'arguments.  args: {args}, kwargs: {kwargs}')

    params = dict(zip(_GDAL_HANDLER_PARAMS, args))
    params.update(kwargs)
    missing = [key for key in _GDAL_HANDLER_PARAMS if key not in params]
    if missing:
        LOGGER.error(
            f'_log_gdal_errors is missing {missing}; '
            f'args: {args}, kwargs: {kwargs}')
        return

    _OSGEO_LOGGER.log(
        level=GDAL_ERROR_LEVELS[params['err_level']],
        msg=f"[errno {params['err_no']}] "
            f"{params['err_msg'].replace(chr(10), '')}")


@contextlib.contextmanager
def capture_gdal_logging():
    """Route GDAL messages to the ``osgeo`` logger within this context."""
    gdal.PushErrorHandler(_log_gdal_errors)
    try:
        yield
    finally:
        gdal.PopErrorHandler()


def _format_time(seconds):
    """Render a number of seconds as e.g. ``'1h 1m 7s'``."""
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    parts = []
    if hours:
        parts.append(f'{int(hours)}h')
    if hours or minutes:
        parts.append(f'{int(minutes)}m')
    parts.append(f'{seconds}s')
    return ' '.join(parts)


@contextlib.contextmanager
def prepare_workspace(
        workspace, model_id, logging_level=logging.NOTSET, exclude_threads=None):
    """Create ``workspace`` and log everything in this context to a file there.

    The logfile is named ``aquasuit-<model_id>-log-<timestamp>.txt``.  GDAL
    messages and python ``warnings`` (such as an empty result) are captured
    into the log, and the elapsed time is logged on exit, also when the
    context raises.
    """
    os.makedirs(workspace, exist_ok=True)
    timestamp = datetime.now().strftime('%Y-%m-%d--%H_%M_%S')
    logfile = os.path.join(
        workspace, f'aquasuit-{model_id}-log-{timestamp}.txt')

    with capture_gdal_logging(), log_to_file(
            logfile, exclude_threads=exclude_threads,
            logging_level=logging_level):
        logging.captureWarnings(True)
        LOGGER.log(100, f'Writing log messages to [{logfile}]')
        start_time = time.time()
        try:
            yield
        except Exception:
            LOGGER.exception(f'{model_id} failed')
            raise
        finally:
            elapsed = round(time.time() - start_time, 2)
            LOGGER.info(f'Elapsed time: {_format_time(elapsed)}')
            logging.captureWarnings(False)
            LOGGER.info(f'aquasuit {aquasuit.__version__} finished')


class ThreadFilter(logging.Filter):
    """Drop records logged from the thread named ``thread_name``."""

    def __init__(self, thread_name):
        super().__init__()
        self.thread_name = thread_name

    def filter(self, record):
        return record.threadName != self.thread_name


@contextlib.contextmanager
def log_to_file(logfile, exclude_threads=None, logging_level=logging.NOTSET,
                log_fmt=LOG_FMT, date_fmt=None):
    """Write every record logged in this context to ``logfile``.

    Args:
        logfile (string): path of the logfile.  An existing file is
            overwritten.
        exclude_threads (list): names of threads whose records are left out.
        logging_level (int): records below this level are left out.
        log_fmt (string): the ``logging.Formatter`` format string.
        date_fmt (string): the date format; ISO8601 when ``None``.

    Yields:
        The ``logging.FileHandler`` writing to ``logfile``.
    """
    if os.path.exists(logfile):
        LOGGER.warning(f'Overwriting existing logfile {logfile}')

    handler = logging.FileHandler(logfile, 'w', encoding='UTF-8')
    handler.setFormatter(logging.Formatter(log_fmt, date_fmt))
    handler.setLevel(logging_level)
    for thread_name in (exclude_threads or []):
        handler.addFilter(ThreadFilter(thread_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.NOTSET)
    root_logger.addHandler(handler)
    try:
        yield handler
    finally:
        handler.close()
        root_logger.removeHandler(handler)


def expand_path(path, base_path):
    """Make ``path`` absolute, resolving it against ``base_path``'s folder.

    Windows separators are converted on macOS and Linux so that datastacks
    written on Windows still resolve.  Falsey paths give ``None``.
    """
    if not path:
        return None
    if platform.system() in {'Darwin', 'Linux'} and '\\' in path:
        path = path.replace('\\', '/')
    if not os.path.isabs(path):
        path = os.path.join(os.path.dirname(base_path), path)
    return os.path.abspath(path)


def create_coordinate_transformer(
        base_ref, target_ref,
        osr_axis_mapping_strategy=DEFAULT_OSR_AXIS_MAPPING_STRATEGY):
    """Build an OSR transformation between two spatial references.

    The references are copied before their axis mapping strategy is set, so
    the caller's objects are left alone.

    Args:
        base_ref (osr.SpatialReference): the source reference.
        target_ref (osr.SpatialReference): the target reference.
        osr_axis_mapping_strategy (int): axis mapping strategy for both
            copies.

    Returns:
        An ``osr.CoordinateTransformation``.
    """
    copies = []
    for ref in (base_ref, target_ref):
        ref_copy = osr.SpatialReference()
        ref_copy.ImportFromWkt(ref.ExportToWkt())
        ref_copy.SetAxisMappingStrategy(osr_axis_mapping_strategy)
        copies.append(ref_copy)
    return osr.CreateCoordinateTransformation(*copies)


def format_args_dict(args_dict, model_id):
    """Format args as two left-aligned columns, sorted by key."""
    sorted_args = sorted(args_dict.items())
    key_width = max((len(key) for key in args_dict), default=0)
    lines = [f'{key:<{key_width}} {value}' for key, value in sorted_args]
    return (f'Arguments for aquasuit {model_id} {aquasuit.__version__}:\n' +
            '\n'.join(lines) + '\n')
