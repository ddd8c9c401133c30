"""Read and write JSON parameter sets ("datastacks") for a model run.

A datastack is a JSON object of the form::

    {
        "model_id": "aquaculture_suitability",
        "aquasuit_version": "0.1.0",
        "args": {"workspace_dir": "...", ...}
    }

Relative paths in ``args`` are relative to the datastack file.
"""
import codecs
import collections
import json
import logging
import os

import aquasuit
from . import utils

LOGGER = logging.getLogger(__name__)
DEFAULT_MODEL_ID = 'aquaculture_suitability'

ParameterSet = collections.namedtuple('ParameterSet', 'args model_id')

_BOOLEAN_STRINGS = {'true': True, 'false': False}


def _map_strings(value, func):
    """Apply ``func`` to every string nested in dicts and lists."""
    if isinstance(value, dict):
        return {key: _map_strings(item, func) for key, item in value.items()}
    if isinstance(value, list):
        return [_map_strings(item, func) for item in value]
    if isinstance(value, str):
        return func(value)
    return value


def extract_parameter_set(paramset_path):
    """Load the args and model id from a datastack file.

    In string values, ``'true'`` and ``'false'`` (any case) become booleans,
    ``~`` and environment variables are expanded, and paths that exist
    relative to the datastack are made absolute.  Absolute paths are
    normalized.

    Args:
        paramset_path (string): path of the datastack JSON.

    Returns:
        A ``ParameterSet`` of ``(args, model_id)``.  ``model_id`` defaults to
        ``DEFAULT_MODEL_ID``.

    Raises:
        ValueError if the datastack has no ``args`` object.
    """
    paramset_path = os.path.abspath(paramset_path)
    with codecs.open(paramset_path, 'r', encoding='UTF-8') as paramset_file:
        paramset = json.loads(paramset_file.read())

    if 'args' not in paramset:
        raise ValueError(f'Datastack {paramset_path} has no "args" object')

    def _parse(value):
        if not value:
            return value
        if value.lower() in _BOOLEAN_STRINGS:
            return _BOOLEAN_STRINGS[value.lower()]

        expanded = os.path.expandvars(os.path.expanduser(value))
        resolved = utils.expand_path(expanded, paramset_path)
        if os.path.isabs(expanded) or os.path.exists(resolved):
            return resolved
        return value

    return ParameterSet(
        args=_map_strings(paramset['args'], _parse),
        model_id=paramset.get('model_id', DEFAULT_MODEL_ID))


def build_parameter_set(args, model_id, paramset_path, relative=False):
    """Write ``args`` to a datastack file.

    Args:
        args (dict): the model args.
        model_id (string): id of the model the args are for.
        paramset_path (string): path of the datastack JSON to write.
        relative (bool): whether to write paths that exist relative to the
            datastack's folder.

    Returns:
        ``None``
    """
    paramset_dir = os.path.dirname(os.path.abspath(paramset_path))

    def _serialize(value):
        if relative and os.path.exists(value):
            return os.path.relpath(value, paramset_dir)
        return value

    paramset = {
        'model_id': model_id,
        'aquasuit_version': aquasuit.__version__,
        'args': _map_strings(args, _serialize),
    }
    with codecs.open(paramset_path, 'w', encoding='UTF-8') as paramset_file:
        paramset_file.write(json.dumps(paramset, indent=4, sort_keys=True))
    LOGGER.debug(f'Wrote parameter set to {paramset_path}')
