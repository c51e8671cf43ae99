import re
import collections

import numpy as np

from cnrefine.errors import UserInputError


# constants

MT_CHROMS = ('chrM', 'MT')

CHROM_PATSTRING_CHR = '(?P<chr>chr)'
CHROM_PATSTRING_NUMBER = '(?P<number>0*(?P<number_proper>[1-9][0-9]*))'
CHROM_PATSTRING_XY = '(?P<xy>[XY])'

PAT_ASSEMBLED_CHROM = re.compile(f'{CHROM_PATSTRING_CHR}?({CHROM_PATSTRING_NUMBER}|{CHROM_PATSTRING_XY})', flags=re.I)

STYLE_UCSC = 'ucsc'
STYLE_ENSEMBL = 'ensembl'


############################
# chromosome name handlers #
############################

def normalize_chrom(chrom, strip_chr=False):
    """Examples:
        chr1 -> chr1
        chrX -> chrX
        chr001 -> chr1
        1 -> chr1
        X -> chrX
        MT -> chrM
        chr19_gl000209_random -> chr19_gl000209_random
    """
    mat = PAT_ASSEMBLED_CHROM.fullmatch(chrom)
    if mat is None:
        if chrom in MT_CHROMS:
            if strip_chr:
                return 'MT'
            else:
                return 'chrM'
        else:  # e.g. chr19_gl000209_random, NC_000001.10
            return chrom
    else:  # e.g. chr1, 1, X, chrY, chr001
        if mat.group('xy') is None:
            proper = mat.group('number_proper')
        else:
            proper = mat.group('xy').upper()

        if strip_chr:
            return proper
        else:
            return 'chr' + proper


def check_assembled_chrom(chrom):
    return PAT_ASSEMBLED_CHROM.fullmatch(chrom) is not None


def detect_chrom_style(chroms):
    """'ucsc' if most assembled chromosome names start with 'chr',
    otherwise 'ensembl'.
    """
    relevant = [x for x in chroms if check_assembled_chrom(x) or (x in MT_CHROMS)]
    if len(relevant) == 0:
        relevant = list(chroms)
    if len(relevant) == 0:
        raise UserInputError(f'Cannot infer chromosome naming style from an empty list.')

    n_prefixed = sum(x.startswith('chr') for x in relevant)
    if n_prefixed >= max(1, len(relevant) / 2):
        return STYLE_UCSC
    else:
        return STYLE_ENSEMBL


def convert_chrom_style(chrom, style):
    if style == STYLE_UCSC:
        if check_assembled_chrom(chrom) or (chrom in MT_CHROMS):
            return normalize_chrom(chrom, strip_chr=False)
        else:
            return chrom
    elif style == STYLE_ENSEMBL:
        if check_assembled_chrom(chrom) or (chrom in MT_CHROMS):
            return normalize_chrom(chrom, strip_chr=True)
        else:
            return chrom
    else:
        raise UserInputError(f'Unknown chromosome naming style: {style!r}')


def chrom_sortkey(chrom):
    """Numbered chromosomes first, then X, Y, mitochondria, then others
    alphabetically.
    """
    normchrom = normalize_chrom(chrom, strip_chr=True)
    if normchrom.isdigit():
        return (0, int(normchrom), '')
    elif normchrom == 'X':
        return (1, 0, '')
    elif normchrom == 'Y':
        return (1, 1, '')
    elif normchrom == 'MT':
        return (1, 2, '')
    else:
        return (2, 0, chrom)


#############
# ChromHash #
#############

class ChromHash(collections.OrderedDict):
    """Chromosome name -> rank. Held fixed during a pipeline call so
    that every sort and join uses the same total order.
    """

    def __init__(self, contigs=tuple()):
        super().__init__()
        for idx, chrom in enumerate(contigs):
            if chrom in self:
                raise UserInputError(f'Duplicate chromosome name in chromosome order: {chrom}')
            self[chrom] = idx

    @classmethod
    def from_chroms(cls, chroms):
        unique_chroms = set(str(x) for x in chroms)
        return cls(sorted(unique_chroms, key=chrom_sortkey))

    @property
    def contigs(self):
        return list(self.keys())

    def get_ranks(self, chroms):
        try:
            return np.fromiter(
                (self[x] for x in chroms),
                dtype=int,
                count=len(chroms),
            )
        except KeyError as exc:
            raise UserInputError(
                f'Chromosome {exc.args[0]!r} is not included in the chromosome order: {self.contigs}'
            ) from exc

    def extended(self, chroms):
        """Returns a new ChromHash with unknown names appended."""
        new_chroms = sorted(
            set(str(x) for x in chroms).difference(self.keys()),
            key=chrom_sortkey,
        )
        return self.__class__(self.contigs + new_chroms)

    def converted(self, style):
        return self.__class__([convert_chrom_style(x, style) for x in self.contigs])
