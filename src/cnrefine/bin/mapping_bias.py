import dataclasses

import cnrefine.workflow as workflow
import cnrefine.logutils as logutils
import cnrefine.mappingbias.mappingbias as mappingbias


def argument_parser(cmdargs):
    parser_dict = workflow.init_parser(
        description=(
            f'Estimates allele-specific mapping bias of each SNP from a panel-of-normals vcf '
            f'(FORMAT/AD, 2 or more samples). The result is saved as a pickle file.'
        )
    )

    workflow.add_infile_arg(
        parser_dict['required'], required=True, help='Panel-of-normals vcf file path.',
    )
    workflow.add_outfile_arg(
        parser_dict['required'], required=True, help='Output mapping bias (pickle) file path.',
    )
    workflow.add_config_arg(parser_dict['optional'])
    workflow.add_verbosity_args(parser_dict)

    args = parser_dict['main'].parse_args(cmdargs)

    return args


def main(cmdargs=None):
    args = argument_parser(cmdargs)
    params = workflow.get_params(args.config_path)['mapping_bias']
    if args.verbose is not None:
        params = dataclasses.replace(params, verbose=args.verbose)

    bias_gdf = mappingbias.calculate_mapping_bias_vcf(args.infile_path, params=params)
    mappingbias.save_mapping_bias(bias_gdf, args.outfile_path)
    with logutils.verbosity(params.verbose):
        logutils.log(
            f'Mapping bias of {bias_gdf.nrow} sites was written to {args.outfile_path}',
            level='info',
        )
