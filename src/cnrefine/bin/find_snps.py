import textwrap

import cnrefine.workflow as workflow
import cnrefine.mappingbias.selector as selector


def argument_parser(cmdargs):
    parser_dict = workflow.init_parser(
        description=(
            f'Selects SNPs with low mapping bias supported by enough normal samples. '
            f'With --vcf, matching records of that vcf are written instead.'
        )
    )

    workflow.add_infile_arg(
        parser_dict['required'], required=True,
        help='Mapping bias (pickle) file made with cnrefine-mapping-bias.',
    )
    workflow.add_outfile_arg(
        parser_dict['required'], required=True, help='Output tsv file path.',
    )

    parser_dict['optional'].add_argument(
        '--vcf', dest='vcf_path', required=False, default=None,
        type=workflow.arghandler_infile, metavar='<vcf file path>',
        help=textwrap.fill(
            'bgzipped and tabix indexed vcf (e.g. dbSNP) to intersect with.',
            width=workflow.HELP_WIDTH,
        ),
    )
    parser_dict['optional'].add_argument(
        '--max-bias', dest='max_bias', required=False, default=None, type=float,
        help=textwrap.fill(
            'Maximum absolute difference of bias from 1. Overrides the config file.',
            width=workflow.HELP_WIDTH,
        ),
    )
    parser_dict['optional'].add_argument(
        '--min-pon', dest='min_pon', required=False, default=None, type=int,
        help=textwrap.fill(
            'Minimum number of informative normal samples. Overrides the config file.',
            width=workflow.HELP_WIDTH,
        ),
    )
    workflow.add_config_arg(parser_dict['optional'])

    parser_dict['flag'].add_argument(
        '--triallelic', dest='triallelic', action='store_true',
        help=textwrap.fill('If set, triallelic sites are kept.', width=workflow.HELP_WIDTH))
    workflow.add_verbosity_args(parser_dict)

    args = parser_dict['main'].parse_args(cmdargs)

    return args


def main(cmdargs=None):
    args = argument_parser(cmdargs)
    params = workflow.get_params(args.config_path)['selector']

    result = selector.find_high_quality_snps(
        args.infile_path,
        max_bias=(params.max_bias if args.max_bias is None else args.max_bias),
        min_pon=(params.min_pon if args.min_pon is None else args.min_pon),
        triallelic=(params.triallelic or args.triallelic),
        vcf_path=args.vcf_path,
        verbose=args.verbose,
    )
    result.write_tsv(args.outfile_path)
