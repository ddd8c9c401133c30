"""Declarative descriptions of model inputs and outputs.

A model module defines a ``MODEL_SPEC`` (a ``ModelSpec``) listing each input
with its type, units and constraints, and each output with its path in the
workspace.  The spec drives arg preprocessing, validation, output directory
creation and the file registry.
"""
import contextlib
import importlib
import json
import logging
import os
import re
import types
import typing

from osgeo import gdal
from osgeo import ogr
from osgeo import osr
import pint
from pygeoprocessing.geoprocessing_core import GDALUseExceptions
from pydantic import AfterValidator, BaseModel, ConfigDict, \
    field_validator, model_validator

from aquasuit.file_registry import FileRegistry
from aquasuit import utils
from aquasuit.validation import get_message
from . import gettext
from .unit_registry import u


LOGGER = logging.getLogger(__name__)

# OGR layer geometry types accepted for each geometry type name.
_OGR_GEOMETRY_TYPES = {
    'POLYGON': (ogr.wkbPolygon, ogr.wkbPolygonM, ogr.wkbPolygonZM,
                ogr.wkbPolygon25D),
    'MULTIPOLYGON': (ogr.wkbMultiPolygon, ogr.wkbMultiPolygonM,
                     ogr.wkbMultiPolygonZM, ogr.wkbMultiPolygon25D),
}


def check_headers(expected_headers, actual_headers, header_type='header'):
    """Check that each expected header occurs exactly once, ignoring case.

    Extra actual headers are fine.

    Args:
        expected_headers (list[str]): headers that must be present.
        actual_headers (list[str]): headers that were found.
        header_type (str): what to call a header in the message, such as
            'column' or 'field'.

    Returns:
        An error message string for the first problem found, or ``None``.
    """
    actual_headers = [header.lower() for header in actual_headers]
    for expected in expected_headers:
        count = actual_headers.count(expected.lower())
        if count == 0:
            return get_message('MATCHED_NO_HEADERS').format(
                header=header_type, header_name=expected)
        if count > 1:
            return get_message('DUPLICATE_HEADER').format(
                header=header_type, header_name=expected, number=count)
    return None


def _check_projection(srs, projected, projection_units):
    """Check a dataset's spatial reference.

    Args:
        srs (osr.SpatialReference): the dataset's spatial reference, or None.
        projected (bool): whether a projected CRS is required.
        projection_units (pint.Unit): the required linear units, if any.

    Returns:
        An error message string, or ``None``.
    """
    with GDALUseExceptions():
        if srs is None or srs.IsSame(osr.SpatialReference()):
            return get_message('INVALID_PROJECTION')

        if projected and not srs.IsProjected():
            return get_message('NOT_PROJECTED')

        if projection_units:
            # pint spells multi-word units with underscores
            units_name = srs.GetLinearUnitsName().lower().replace(' ', '_')
            try:
                matches = u.Unit(units_name) == projection_units
            except pint.errors.UndefinedUnitError:
                matches = False
            if not matches:
                return get_message('WRONG_PROJECTION_UNIT').format(
                    unit_a=projection_units, unit_b=units_name)
    return None


def validate_permissions_string(permissions):
    """Check that a permissions string uses each of r, w and x at most once.

    Raises:
        ValueError for any other letter or a repeated letter.
    """
    for letter in permissions:
        if letter not in 'rwx':
            raise ValueError('permissions contains a letter other than r,w,x')
    if len(set(permissions)) != len(permissions):
        raise ValueError('permissions contains a duplicate letter')
    return permissions


PermissionsString = typing.Annotated[
    str, AfterValidator(validate_permissions_string)]


class Input(BaseModel):
    """One input parameter of a model (not its value for a given run)."""
    # pint.Unit is not a pydantic type
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    """Unique key of the input in the args dict."""

    name: typing.Union[str, None] = None
    """Short user-facing name, lower case."""

    about: typing.Union[str, None] = None
    """User-facing description."""

    required: bool = True
    """Whether the input must have a value."""

    hidden: bool = False
    """Hidden inputs are left out of ``input_field_order``."""

    def preprocess(self, value):
        return value


class Output(BaseModel):
    """One output of a model."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    """Unique key of the output in the file registry."""

    about: typing.Union[str, None] = None


class FileInput(Input):
    """A path to a file."""
    permissions: PermissionsString = 'r'
    """Any of ``r``, ``w`` and ``x`` that the user needs on the file."""

    type: typing.ClassVar[str] = 'file'

    def validate(self, filepath: str):
        """Return an error message if the file is missing or inaccessible."""
        if not os.path.exists(filepath):
            return get_message('FILE_NOT_FOUND')

        for letter, mode, permission in (
                ('r', os.R_OK, 'read'),
                ('w', os.W_OK, 'write'),
                ('x', os.X_OK, 'execute')):
            if letter in self.permissions and not os.access(filepath, mode):
                return get_message('NEED_PERMISSION_FILE').format(
                    permission=permission)
        return None

    def preprocess(self, value):
        return os.path.abspath(value) if value else None


class SpatialFileInput(FileInput):
    """A raster or vector file."""
    projected: typing.Union[bool, None] = None
    """Whether the dataset must be in a projected CRS."""

    projection_units: typing.Union[pint.Unit, None] = None
    """Linear units the projected CRS must use."""

    @model_validator(mode='after')
    def check_projected_projection_units(self):
        if self.projection_units and not self.projected:
            raise ValueError(
                'Cannot specify projection_units when projected is None')
        return self


class SingleBandRasterInput(SpatialFileInput):
    """A GDAL raster of which only the first band is read."""
    data_type: typing.Type = float
    """``float`` or ``int``."""

    units: typing.Union[pint.Unit, None]
    """Units of the cell values."""

    type: typing.ClassVar[str] = 'raster'

    def validate(self, filepath: str):
        """Return an error message if the file is not a usable raster."""
        with GDALUseExceptions():
            file_warning = super().validate(filepath)
            if file_warning:
                return file_warning

            try:
                dataset = gdal.OpenEx(filepath, gdal.OF_RASTER)
            except RuntimeError:
                return get_message('NOT_GDAL_RASTER')

            # GDAL opens overview files as rasters too
            if os.path.splitext(filepath)[1] == '.ovr':
                return get_message('OVR_FILE')

            return _check_projection(
                dataset.GetSpatialRef(), self.projected,
                self.projection_units)


class VectorInput(SpatialFileInput):
    """A GDAL vector of which only the first layer is read."""
    geometry_types: set
    """Names of the allowed layer geometry types, e.g. ``{'POLYGON'}``."""

    fields: list[Input]
    """Fields the layer must have; each ``id`` is a field name."""

    type: typing.ClassVar[str] = 'vector'

    def validate(self, filepath: str):
        """Return an error message if the file is not a usable vector.

        Only the layer's declared geometry type is checked, not the type of
        each feature.
        """
        with GDALUseExceptions():
            file_warning = super().validate(filepath)
            if file_warning:
                return file_warning

            try:
                dataset = gdal.OpenEx(filepath, gdal.OF_VECTOR)
            except RuntimeError:
                return get_message('NOT_GDAL_VECTOR')

            layer = dataset.GetLayer()
            allowed_types = set()
            for geometry_type in self.geometry_types:
                allowed_types.update(_OGR_GEOMETRY_TYPES[geometry_type])
            if layer.GetGeomType() not in allowed_types:
                return get_message('WRONG_GEOM_TYPE').format(
                    allowed=self.geometry_types)

            required_fields = [
                field.id for field in self.fields if field.required]
            if required_fields:
                field_warning = check_headers(
                    required_fields,
                    [defn.GetName() for defn in layer.schema], 'field')
                if field_warning:
                    return field_warning

            return _check_projection(
                layer.GetSpatialRef(), self.projected, self.projection_units)


class DirectoryInput(Input):
    """A directory, either of input files or for outputs."""
    contents: list[Input]
    """Inputs expected inside the directory."""

    permissions: PermissionsString = ''
    """Any of ``r``, ``w`` and ``x`` that the user needs on the directory."""

    must_exist: bool = True
    """False if the model creates the directory when it is missing."""

    type: typing.ClassVar[str] = 'directory'

    def validate(self, dirpath: str):
        """Return an error message if the directory is unusable.

        When the directory does not exist yet (and need not), permissions are
        checked on its nearest existing parent.
        """
        if os.path.exists(dirpath):
            if not os.path.isdir(dirpath):
                return get_message('NOT_A_DIR')
        elif self.must_exist:
            return get_message('DIR_NOT_FOUND')
        else:
            dirpath = os.path.normcase(os.path.abspath(dirpath))
            while not os.path.exists(dirpath):
                parent = os.path.dirname(dirpath)
                if parent == dirpath:
                    break
                dirpath = parent

        if 'r' in self.permissions:
            try:
                os.scandir(dirpath).close()
            except OSError:
                return get_message('NEED_PERMISSION_DIRECTORY').format(
                    permission='read')

        if 'x' in self.permissions and not os.access(dirpath, os.X_OK):
            return get_message('NEED_PERMISSION_DIRECTORY').format(
                permission='execute')

        if 'w' in self.permissions:
            probe_path = os.path.join(dirpath, 'temp__workspace_validation.txt')
            try:
                with open(probe_path, 'w'):
                    pass
                os.remove(probe_path)
            except OSError:
                return get_message('NEED_PERMISSION_DIRECTORY').format(
                    permission='write')
        return None

    def preprocess(self, value):
        return os.path.abspath(value) if value else None


class NumberInput(Input):
    """A real number."""
    units: typing.Union[pint.Unit, None]

    type: typing.ClassVar[str] = 'number'

    def validate(self, value):
        """Return an error message if ``value`` is not a number."""
        try:
            float(value)
        except (TypeError, ValueError):
            return get_message('NOT_A_NUMBER').format(value=value)
        return None

    def preprocess(self, value):
        return None if value in {None, ''} else float(value)


class StringInput(Input):
    """Free text, optionally constrained by a regular expression."""
    regexp: typing.Union[str, None] = None
    """Pattern the whole value must match."""

    type: typing.ClassVar[str] = 'string'

    @field_validator('regexp', mode='after')
    @classmethod
    def check_regexp(cls, regexp: typing.Union[str, None]) -> typing.Union[str, None]:
        if regexp is not None:
            try:
                re.compile(regexp)
            except re.error:
                raise ValueError(f'Failed to compile regexp {regexp}')
        return regexp

    def validate(self, value):
        if self.regexp and not re.fullmatch(self.regexp, str(value)):
            return get_message('REGEXP_MISMATCH').format(regexp=self.regexp)
        return None

    def preprocess(self, value):
        return None if value in {None, ''} else str(value)


class ResultsSuffixInput(StringInput):
    """Suffix for output filenames; always starts with an underscore."""

    def preprocess(self, value):
        value = super().preprocess(value)
        if not value:
            return ''
        return value if value.startswith('_') else f'_{value}'


class FileOutput(Output):
    path: str
    """Path of the file relative to the workspace."""


class SingleBandRasterOutput(FileOutput):
    data_type: typing.Type = float
    units: typing.Union[pint.Unit, None] = None


class NumberOutput(Output):
    units: typing.Union[pint.Unit, None] = None


class StringOutput(Output):
    pass


class VectorOutput(FileOutput):
    geometry_types: set = set()
    fields: list[Output]
    """Fields written to the layer; numbers or strings only."""

    @model_validator(mode='after')
    def check_field_types(self):
        for field in self.fields:
            if type(field) not in {NumberOutput, StringOutput}:
                raise ValueError(f'Field {field} is not an allowed type')
        return self


class CSVOutput(FileOutput):
    columns: typing.Union[list[Output], None] = None
    index_col: typing.Union[str, None] = None
    """Id of the column that identifies each row."""

    @model_validator(mode='after')
    def validate_index_col_in_columns(self):
        if (self.index_col is not None and
                self.index_col not in [column.id for column in self.columns]):
            raise ValueError(f'index_col {self.index_col} not found in columns')
        return self


def _json_default(obj):
    """``json.dumps`` fallback for the objects a ``ModelSpec`` holds."""
    if isinstance(obj, pint.Unit):
        return f'{obj:~P}'
    if isinstance(obj, set):
        return sorted(obj)
    if isinstance(obj, types.FunctionType):
        return str(obj)
    if obj is int:
        return 'integer'
    if obj is float:
        return 'number'
    if isinstance(obj, BaseModel):
        as_dict = obj.model_dump()
        # ClassVars are not dumped
        if hasattr(obj, 'type'):
            as_dict['type'] = obj.type
        return as_dict
    raise TypeError(f'Cannot serialize {type(obj)} to JSON')


class ModelSpec(BaseModel):
    """Everything a runner needs to know about a model's args and outputs."""

    model_id: str
    """Snake-case identifier, also used on the command line."""

    model_title: str

    input_field_order: list[list[str]]
    """Groups of input ids in display order.  Every input that is not
    hidden appears exactly once."""

    inputs: list[Input]

    outputs: list[Output]

    validate_spatial_overlap: typing.Union[bool, list[str]] = True
    """True to check that all spatial inputs overlap, or a list of the
    input ids to check."""

    different_projections_ok: bool = True
    """Whether spatial inputs may be in different projections."""

    aliases: set = set()
    """Other names for the model on the command line."""

    module_name: str
    """Importable name of the module defining ``execute``."""

    @model_validator(mode='after')
    def check_inputs_in_field_order(self):
        seen_ids = set()
        for group in self.input_field_order:
            for input_id in group:
                if input_id in seen_ids:
                    raise ValueError(
                        f'Key {input_id} appears more than once in '
                        'input_field_order')
                seen_ids.add(input_id)
        for _input in self.inputs:
            if _input.hidden:
                if _input.id in seen_ids:
                    raise ValueError(
                        f'Input {_input.id} is hidden but appears in '
                        'input_field_order')
                seen_ids.add(_input.id)
        if seen_ids != {_input.id for _input in self.inputs}:
            raise ValueError(
                'Mismatch between keys in inputs and input_field_order')
        return self

    def get_input(self, key: str) -> Input:
        """Look up an input by id.  Raises ``KeyError`` if there is none."""
        for _input in self.inputs:
            if _input.id == key:
                return _input
        raise KeyError(key)

    def to_json(self):
        """The spec as a JSON string, with inputs and outputs keyed by id."""
        spec_dict = self.__dict__.copy()
        spec_dict['inputs'] = {_input.id: _input for _input in self.inputs}
        spec_dict['outputs'] = {
            _output.id: _output for _output in self.outputs}
        return json.dumps(spec_dict, default=_json_default, ensure_ascii=False)

    def preprocess_inputs(self, input_values):
        """Preprocess raw args into exactly this model's input keys.

        Inputs missing from ``input_values`` are preprocessed from ``None``.
        """
        return {
            _input.id: _input.preprocess(input_values.get(_input.id, None))
            for _input in self.inputs}

    def create_output_directories(self, args):
        """Create the workspace subdirectories that file outputs are in."""
        for output in self.outputs:
            if isinstance(output, FileOutput):
                os.makedirs(os.path.join(
                    args['workspace_dir'], os.path.dirname(output.path)),
                    exist_ok=True)

    def setup(self, args):
        """Preprocess args, create output folders and build a file registry.

        Returns:
            ``(args, file_registry)``
        """
        args = self.preprocess_inputs(args)
        self.create_output_directories(args)
        file_registry = FileRegistry(
            outputs=self.outputs,
            workspace_dir=args['workspace_dir'],
            file_suffix=args['results_suffix'])
        return args, file_registry

    def execute(self, args, create_logfile=False, log_level=logging.NOTSET,
                save_file_registry=False):
        """Run the model's ``execute`` with GDAL exceptions enabled.

        Args:
            args (dict): the raw args.
            create_logfile (bool): whether to log the run to a timestamped
                file in the workspace.
            log_level (int): threshold of the logfile.
            save_file_registry (bool): whether to write the returned
                registry to ``file_registry<suffix>.json`` in the workspace.

        Returns:
            The file registry dict returned by the model.
        """
        if create_logfile:
            log_context = utils.prepare_workspace(
                args['workspace_dir'], model_id=self.model_id,
                logging_level=log_level)
        else:
            log_context = contextlib.nullcontext()

        with GDALUseExceptions(), log_context:
            # above CRITICAL so it is always in the logfile
            LOGGER.log(
                100, 'Starting model with parameters: \n' +
                utils.format_args_dict(args, self.model_id))

            model_module = importlib.import_module(self.module_name)
            registry = model_module.execute(args)

            if save_file_registry:
                preprocessed_args = self.preprocess_inputs(args)
                registry_path = os.path.join(
                    preprocessed_args['workspace_dir'],
                    f'file_registry{preprocessed_args["results_suffix"]}.json')
                with open(registry_path, 'w') as registry_file:
                    json.dump(registry, registry_file, indent=4)

            return registry


# Inputs shared by models #####################################################
WORKSPACE = DirectoryInput(
    id="workspace_dir",
    name=gettext("workspace"),
    about=gettext(
        "The folder where all the model's output files will be written."
        " If this folder does not exist, it will be created. If data"
        " already exists in the folder, it will be overwritten."
    ),
    contents=[],
    permissions="rwx",
    must_exist=False,
)
SUFFIX = ResultsSuffixInput(
    id="results_suffix",
    name=gettext("file suffix"),
    about=gettext(
        "Suffix that will be appended to all output file names. Useful to"
        " differentiate between model runs."
    ),
    required=False,
    regexp="[a-zA-Z0-9_-]*"
)

POLYGON = {'POLYGON'}
MULTIPOLYGON = {'MULTIPOLYGON'}
POLYGONS = POLYGON | MULTIPOLYGON
