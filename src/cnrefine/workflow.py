import os
import argparse
import textwrap

import cnrefine.params as libparams


HELP_WIDTH = 50
DESCRIPTION_WIDTH = 80


###########
# parsers #
###########

class CustomFormatter(
    argparse.ArgumentDefaultsHelpFormatter,
    argparse.RawTextHelpFormatter
):
    pass


def init_parser(description=None, formatter_class=None):
    if formatter_class is None:
        formatter_class = CustomFormatter

    parser = argparse.ArgumentParser(
        description=description,
        formatter_class=formatter_class,
        add_help=False,
    )

    required = parser.add_argument_group(
        title='REQUIRED',
        description=textwrap.fill(
            'Required ones which accept 1 or more arguments.',
            width=DESCRIPTION_WIDTH))

    optional = parser.add_argument_group(
        title='OPTIONAL',
        description=textwrap.fill(
            'Optional ones which accept 1 or more arguments.',
            width=DESCRIPTION_WIDTH))

    flag = parser.add_argument_group(
        title='FLAG',
        description=textwrap.fill(
            'Optional ones which accept 0 argument.',
            width=DESCRIPTION_WIDTH))

    add_help_arg(flag)

    parser_dict = {'main': parser, 'required': required,
                   'optional': optional, 'flag': flag}

    return parser_dict


def add_help_arg(parser, help='show this help message and exit'):
    parser.add_argument('-h', '--help', action='help',
                        help=textwrap.fill(help, width=HELP_WIDTH))


def add_infile_arg(parser, required=True, help='Input vcf file path.'):
    parser.add_argument(
        '-i', '--infile', dest='infile_path', required=required,
        type=arghandler_infile, metavar='<input file path>',
        help=textwrap.fill(help, width=HELP_WIDTH))


def add_outfile_arg(parser, required=True, help='Output file path.'):
    parser.add_argument(
        '-o', '--outfile', dest='outfile_path', required=required,
        type=arghandler_outfile, metavar='<output file path>',
        help=textwrap.fill(help, width=HELP_WIDTH),
    )


def add_config_arg(parser):
    parser.add_argument(
        '--config', dest='config_path', required=False, default=None,
        type=arghandler_infile, metavar='<yaml file path>',
        help=textwrap.fill(
            'YAML file with optional sections "mapping_bias", "segmentation" '
            'and "selector". Missing values take defaults.',
            width=HELP_WIDTH,
        ),
    )


def add_verbosity_args(parser_dict):
    parser_dict['flag'].add_argument(
        '--verbose', dest='verbose', action='store_const', const=True, default=None,
        help=textwrap.fill('If set, debugging messages are printed.', width=HELP_WIDTH))

    parser_dict['flag'].add_argument(
        '--silent', dest='verbose', action='store_const', const=False,
        help=textwrap.fill(
            'If set, only warnings and errors are printed to the terminal.',
            width=HELP_WIDTH))


def get_params(config_path):
    if config_path is None:
        return {key: cls() for key, cls in libparams.SECTIONS.items()}
    else:
        return libparams.load_params(config_path)


###############
# arghandlers #
###############

def check_infile_validity(infile):
    if not os.path.exists(infile):
        raise Exception(f'"{infile}" does not exist.')
    if not os.path.isfile(infile):
        raise Exception(f'"{infile}" is not a regular file.')
    if not os.access(infile, os.R_OK):
        raise Exception(f'You do not have read permission on "{infile}".')


def check_outfile_validity(outfile):
    if os.path.isdir(outfile):
        raise Exception(f"'{outfile}' is an existing directory.")
    if not os.access(os.path.dirname(outfile), os.W_OK | os.X_OK):
        raise Exception(f'You do not have w/x permission on dirname of "{outfile}".')


def arghandler_infile(arg):
    arg = os.path.abspath(arg)

    try:
        check_infile_validity(arg)
    except Exception as e:
        raise argparse.ArgumentTypeError(str(e))
    else:
        return arg


def arghandler_outfile(arg):
    arg = os.path.abspath(arg)

    try:
        check_outfile_validity(arg)
    except Exception as e:
        raise argparse.ArgumentTypeError(str(e))
    else:
        return arg
