import warnings

import numpy as np
import pandas as pd
import pyranges as pr

import cnrefine.tools as tools
import cnrefine.genomedf.genomedf_utils as genomedf_utils
from cnrefine.refgenome import ChromHash
from cnrefine.errors import InvalidOrder


JOIN_IDX_COLNAME = 'Idx'
EMPTY_IDXS = np.array([], dtype=int)


class GenomeDataFrame:
    """Table of 0-based half-open genomic intervals with annotation columns.

    Instances are treated as immutable values: every method that changes
    rows or columns returns a new object. The chromosome order ("chromhash")
    is shared by all objects spawned from one another.
    """

    COMMON_COLUMNS = genomedf_utils.COMMON_COLUMNS

    ###########
    # dunders #
    ###########

    def __init__(self, frame, chromhash=None):
        df = genomedf_utils.postprocess_df(frame)
        if chromhash is None:
            chromhash = ChromHash.from_chroms(df['Chromosome'])
        else:
            chromhash.get_ranks(df['Chromosome'].to_numpy())  # sanitycheck
        self._df = df
        self.chromhash = chromhash

    def __repr__(self):
        return f'<{self.__class__.__name__} object>\n{repr(self._df)}'

    def __len__(self):
        return self.nrow

    def __getitem__(self, key):
        if isinstance(key, str):
            return self._df[key].to_numpy()
        else:
            return self._df.loc[:, list(key)]

    ################
    # constructors #
    ################

    def spawn(self, frame):
        return self.__class__(frame, chromhash=self.chromhash)

    @classmethod
    def from_data(cls, chroms, start0s, end0s, chromhash=None, **kwargs):
        source_dict = dict()
        source_dict['Chromosome'] = np.asarray(chroms).astype(str)
        source_dict['Start'] = start0s
        source_dict['End'] = end0s
        for key, val in kwargs.items():
            source_dict[key] = val

        return cls(pd.DataFrame(source_dict), chromhash=chromhash)

    @classmethod
    def init_empty(cls, chromhash=None, annot_cols=tuple()):
        if chromhash is None:
            chromhash = ChromHash()
        return cls(genomedf_utils.make_empty_df(annot_cols), chromhash=chromhash)

    @classmethod
    def concat(cls, gdf_iterator):
        gdf_list = list(gdf_iterator)
        assert len(gdf_list) > 0

        chromhash = gdf_list[0].chromhash
        for gdf in gdf_list[1:]:
            chromhash = chromhash.extended(gdf.chromhash.contigs)

        with warnings.catch_warnings():
            warnings.simplefilter('ignore', FutureWarning)
            new_df = pd.concat([x.df for x in gdf_list], axis=0)

        return cls(new_df, chromhash=chromhash)

    @classmethod
    def read_tsv(cls, filename, chromhash=None):
        df = pd.read_csv(filename, sep='\t', header=0, dtype={'Chromosome': str})
        return cls(df, chromhash=chromhash)

    def write_tsv(self, filename):
        self._df.to_csv(filename, sep='\t', header=True, index=False, na_rep='NA')

    ##############
    # properties #
    ##############

    @property
    def df(self):
        return self._df

    @property
    def nrow(self):
        return self._df.shape[0]

    @property
    def is_empty(self):
        return self.nrow == 0

    @property
    def columns(self):
        return self._df.columns.to_list()

    @property
    def chroms(self):
        return self._df['Chromosome'].to_numpy()

    @property
    def starts(self):
        return self._df['Start'].to_numpy()

    @property
    def ends(self):
        return self._df['End'].to_numpy()

    @property
    def lengths(self):
        return self.ends - self.starts

    @property
    def chrom_ranks(self):
        return self.chromhash.get_ranks(self.chroms)

    def get_midpoints(self):
        """0-based position of the middle base"""
        return np.floor((self.starts + self.ends - 1) / 2).astype(int)

    @property
    def gr(self):
        frame = pd.DataFrame(
            {
                'Chromosome': self.chroms,
                'Start': self.starts,
                'End': self.ends,
                JOIN_IDX_COLNAME: np.arange(self.nrow),
            }
        )
        return pr.PyRanges(frame)

    ###########################
    # value-semantic editing #
    ###########################

    def copy(self):
        return self.spawn(self._df.copy())

    def assign(self, **kwargs):
        return self.spawn(self._df.assign(**kwargs))

    def drop_annots(self, columns):
        return self.spawn(self._df.drop(columns=list(columns)))

    def choose_annots(self, columns):
        return self.spawn(self._df.loc[:, self.COMMON_COLUMNS + list(columns)])

    def take(self, indexes):
        return self.spawn(self._df.iloc[np.asarray(indexes, dtype=int), :])

    def filter(self, selector):
        return self.spawn(self._df.loc[np.asarray(selector, dtype=bool), :])

    def set_chroms(self, chroms, chromhash):
        new_df = self._df.copy()
        new_df['Chromosome'] = list(chroms)
        return self.__class__(new_df, chromhash=chromhash)

    #########
    # order #
    #########

    def get_sortkey(self):
        return np.lexsort([self.ends, self.starts, self.chrom_ranks])

    def sort(self):
        if self.is_empty:
            return self.copy()
        return self.take(self.get_sortkey())

    def check_sorted(self):
        if self.nrow <= 1:
            return True
        ranks = self.chrom_ranks
        starts = self.starts
        rank_diff = np.diff(ranks)
        start_diff = np.diff(starts)
        return bool(
            ((rank_diff > 0) | ((rank_diff == 0) & (start_diff >= 0))).all()
        )

    def ensure_sorted(self, name='table'):
        if not self.check_sorted():
            raise InvalidOrder(
                f'Intervals of {name} are not sorted by (chromosome rank, start).'
            )

    def group_bychrom(self):
        """Returns a dict chrom -> row indexes, in chromosome-rank order.
        Row indexes keep the original order of rows.
        """
        result = dict()
        chroms = self.chroms
        for chrom in self.chromhash.contigs:
            indexes = np.nonzero(chroms == chrom)[0]
            if len(indexes) > 0:
                result[chrom] = indexes
        return result

    ########
    # join #
    ########

    def overlap_join(self, other):
        """Returns (self_indexes, other_indexes) of all overlapping pairs,
        each pair once, ordered by self index then other index.
        """
        self.ensure_sorted('left table')
        other.ensure_sorted('right table')
        if self.is_empty or other.is_empty:
            return EMPTY_IDXS, EMPTY_IDXS

        joined_gr = self.gr.join(other.gr, suffix='_b')
        if joined_gr.empty:
            return EMPTY_IDXS, EMPTY_IDXS

        joined_df = joined_gr.df
        self_idxs = joined_df[JOIN_IDX_COLNAME].to_numpy().astype(int)
        other_idxs = joined_df[JOIN_IDX_COLNAME + '_b'].to_numpy().astype(int)
        sortkey = np.lexsort([other_idxs, self_idxs])

        return self_idxs[sortkey], other_idxs[sortkey]

    def find_first(self, other):
        """For each row, index of the first overlapping row of "other"
        (-1 if none)
        """
        self_idxs, other_idxs = self.overlap_join(other)
        result = np.full(self.nrow, -1, dtype=int)
        if len(self_idxs) > 0:
            uniq_idxs, first_pos = np.unique(self_idxs, return_index=True)
            result[uniq_idxs] = other_idxs[first_pos]
        return result

    def find_last(self, other):
        """For each row, index of the last overlapping row of "other"
        (-1 if none)
        """
        self_idxs, other_idxs = self.overlap_join(other)
        result = np.full(self.nrow, -1, dtype=int)
        if len(self_idxs) > 0:
            uniq_idxs, rev_first_pos = np.unique(self_idxs[::-1], return_index=True)
            result[uniq_idxs] = other_idxs[::-1][rev_first_pos]
        return result

    def get_overlap_groups(self, other):
        """Returns a list with, for each row, the array of overlapping row
        indexes of "other" (ascending).
        """
        self_idxs, other_idxs = self.overlap_join(other)
        counts = np.bincount(self_idxs, minlength=self.nrow)
        return np.split(other_idxs, np.cumsum(counts)[:-1])

    def equal_join(self, other):
        """Returns (self_indexes, other_indexes) of row pairs with identical
        coordinates.
        """
        left = pd.DataFrame(
            {
                'Chromosome': self.chroms,
                'Start': self.starts,
                'End': self.ends,
                'left_idx': np.arange(self.nrow),
            }
        )
        right = pd.DataFrame(
            {
                'Chromosome': other.chroms,
                'Start': other.starts,
                'End': other.ends,
                'right_idx': np.arange(other.nrow),
            }
        )
        merged = left.merge(right, how='inner', on=self.COMMON_COLUMNS)
        merged.sort_values(['left_idx', 'right_idx'], inplace=True)
        return (
            merged['left_idx'].to_numpy().astype(int),
            merged['right_idx'].to_numpy().astype(int),
        )

    ##########
    # merges #
    ##########

    def merge(self, slack=0):
        """pyranges merge of overlapping intervals; annotations are dropped"""
        if self.is_empty:
            return GenomeDataFrame.init_empty(chromhash=self.chromhash)
        merged_df = self.gr.merge(slack=slack).df
        return GenomeDataFrame(merged_df, chromhash=self.chromhash).sort()

    def merge_byannot(self, annot_colnames, sum_cols=tuple(), last_cols=tuple()):
        """Coalesces run-adjacent rows on the same chromosome sharing
        all values of "annot_colnames". Start comes from the first row, End
        and "last_cols" from the last, "sum_cols" are summed, and other
        annotation columns are taken from the first row.
        """
        annot_colnames = list(np.atleast_1d(annot_colnames))
        if self.is_empty:
            return self.copy()
        self.ensure_sorted()

        _, counts, _ = tools.array_grouper(
            self._df.loc[:, ['Chromosome'] + annot_colnames],
            omit_values=True,
        )
        last_idxs = np.cumsum(counts) - 1
        first_idxs = last_idxs - counts + 1

        merged_df = self._df.iloc[first_idxs, :].reset_index(drop=True)
        for key in ['End'] + list(last_cols):
            merged_df[key] = self._df[key].to_numpy()[last_idxs]
        for key in sum_cols:
            merged_df[key] = np.add.reduceat(self._df[key].to_numpy(), first_idxs)

        return self.spawn(merged_df)
