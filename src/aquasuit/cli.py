# coding=UTF-8
"""Single entry point for running and validating aquasuit models."""
import argparse
import importlib
import json
import logging
import pprint
import sys

from . import __version__
from . import datastack

LOGGER = logging.getLogger(__name__)

_MODELS = {
    'aquaculture_suitability': 'aquasuit.aquaculture_suitability',
}


def _import_model(model_id):
    try:
        return importlib.import_module(_MODELS[model_id])
    except KeyError:
        raise ValueError(f'Unknown model "{model_id}"')


def build_model_list_table():
    """Build a table of model ids and titles, one model per line."""
    strings = ['Available models:']
    max_model_id_length = max(len(model_id) for model_id in _MODELS)
    for model_id in sorted(_MODELS):
        model_spec = _import_model(model_id).MODEL_SPEC
        aliases = ', '.join(sorted(model_spec.aliases))
        if aliases:
            aliases = f'({aliases})'
        strings.append(
            f'    {model_id.ljust(max_model_id_length)} {aliases} '
            f'{model_spec.model_title}')
    return '\n'.join(strings) + '\n'


def main(user_args=None):
    """CLI entry point for aquasuit runs.

    ``aquasuit run -d DATASTACK -w WORKSPACE`` runs the model a datastack is
    for; ``aquasuit validate DATASTACK`` prints its validation warnings.
    """
    parser = argparse.ArgumentParser(
        description=(
            'Find the area suitable for farming a marine species within each '
            'maritime zone, from sea surface temperature and depth rasters.'),
        prog='aquasuit'
    )
    parser.add_argument('--version', action='version', version=__version__)
    verbosity_group = parser.add_mutually_exclusive_group()
    verbosity_group.add_argument(
        '-v', '--verbose', dest='verbosity', default=0, action='count',
        help=('Increase verbosity.  Affects how much logging is printed to '
              'the console and how much is written to the logfile.'))
    verbosity_group.add_argument(
        '--debug', dest='log_level', default=logging.ERROR,
        action='store_const', const=logging.DEBUG,
        help='Enable debug logging. Alias for -vvvv')

    subparsers = parser.add_subparsers(dest='subcommand')

    subparsers.add_parser('list', help='List the available models')

    run_subparser = subparsers.add_parser('run', help='Run a model')
    run_subparser.add_argument(
        '-d', '--datastack', required=True,
        help='Run the model with this JSON datastack.')
    run_subparser.add_argument(
        '-w', '--workspace', default=None, nargs='?',
        help=('The workspace in which outputs will be saved. Overrides the '
              'workspace in the datastack.'))

    validate_subparser = subparsers.add_parser(
        'validate', help='Validate the parameters of a datastack')
    validate_subparser.add_argument(
        '--json', action='store_true', help='Write output as a JSON object')
    validate_subparser.add_argument(
        'datastack', help='Validate the args of this JSON datastack.')

    getspec_subparser = subparsers.add_parser(
        'getspec', help='Get the specification of a model.')
    getspec_subparser.add_argument(
        'model', choices=sorted(_MODELS),
        help='The model for which the spec should be fetched.')

    args = parser.parse_args(user_args)
    if args.subcommand is None:
        parser.print_help()
        parser.exit(1)

    root_logger = logging.getLogger()
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt='%(asctime)s %(name)-18s %(levelname)-8s %(message)s',
        datefmt='%m/%d/%Y %H:%M:%S ')
    handler.setFormatter(formatter)

    # The more v's the lower the logging threshold, but never below DEBUG.
    log_level = min(args.log_level, logging.ERROR - (args.verbosity * 10))
    handler.setLevel(max(log_level, logging.DEBUG))
    root_logger.addHandler(handler)
    LOGGER.info('Setting handler log level to %s', log_level)
    logging.getLogger('aquasuit').setLevel(logging.DEBUG)

    if args.subcommand == 'list':
        sys.stdout.write(build_model_list_table())
        parser.exit()

    if args.subcommand == 'getspec':
        sys.stdout.write(_import_model(args.model).MODEL_SPEC.to_json())
        parser.exit(0)

    try:
        parsed_datastack = datastack.extract_parameter_set(args.datastack)
        model_module = _import_model(parsed_datastack.model_id)
    except Exception as error:
        parser.exit(
            1, "Error when parsing JSON datastack file:\n    " + str(error))

    if args.subcommand == 'validate':
        try:
            validation_result = model_module.validate(parsed_datastack.args)
        except Exception as error:
            parser.exit(
                1, ('Datastack could not be validated:\n    ' + str(error)))

        # Even validation errors will have an exit code of 0
        if args.json:
            message = json.dumps({'validation_results': validation_result})
        else:
            message = pprint.pformat(validation_result)
        sys.stdout.write(message)
        parser.exit(0)

    if args.subcommand == 'run':
        if args.workspace:
            parsed_datastack.args['workspace_dir'] = args.workspace
        elif parsed_datastack.args.get('workspace_dir') in ('', None):
            parser.exit(
                1, ('Workspace must be defined at the command line '
                    'or in the datastack file'))

        LOGGER.info(f'Imported target {model_module.__name__}')
        try:
            model_module.MODEL_SPEC.execute(
                parsed_datastack.args, create_logfile=True,
                log_level=log_level, save_file_registry=True)
        except Exception as error:
            LOGGER.debug('Model run failed', exc_info=True)
            parser.exit(1, f'Model run failed:\n    {error}\n')
        LOGGER.info(
            'Outputs written to %s', parsed_datastack.args['workspace_dir'])
        parser.exit(0)


if __name__ == '__main__':
    main()
