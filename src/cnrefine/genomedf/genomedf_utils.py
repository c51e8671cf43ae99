import numpy as np
import pandas as pd

from cnrefine.errors import UserInputError


COMMON_COLUMNS = ['Chromosome', 'Start', 'End']
DEFAULT_DTYPES = {
    'Chromosome': str,
    'Start': np.int64,
    'End': np.int64,
}


def sanitycheck_df(df):
    missing = set(COMMON_COLUMNS).difference(df.columns)
    if missing:
        raise UserInputError(f'Interval table lacks required column(s): {sorted(missing)}')
    if df[COMMON_COLUMNS].isna().any(axis=None):
        raise UserInputError(f'Interval table contains missing coordinates.')

    starts = df['Start'].to_numpy()
    ends = df['End'].to_numpy()
    if (starts < 0).any():
        raise UserInputError(f'Interval table contains negative Start values.')
    if not (starts < ends).all():
        idx = np.nonzero(starts >= ends)[0][0]
        raise UserInputError(
            f'Interval Start must be smaller than End (0-based half-open); '
            f'offending row: {df.iloc[idx, :3].to_dict()}'
        )


def postprocess_df(df):
    sanitycheck_df(df)
    df = df.astype(DEFAULT_DTYPES)
    leading = COMMON_COLUMNS + [x for x in df.columns if x not in COMMON_COLUMNS]
    df = df.loc[:, leading]
    df.reset_index(drop=True, inplace=True)
    return df


def get_duplicate_coords_selector(df, keep=False):
    """keep=False marks every member of a duplicated coordinate group,
    i.e. forward and reverse duplicate flags unioned.
    """
    return df.loc[:, COMMON_COLUMNS].duplicated(keep=keep).to_numpy()


def make_empty_df(annot_cols=tuple()):
    return pd.DataFrame(
        {
            'Chromosome': pd.Series([], dtype=str),
            'Start': pd.Series([], dtype=np.int64),
            'End': pd.Series([], dtype=np.int64),
        }
        | {key: pd.Series([], dtype=object) for key in annot_cols}
    )
