import os
import re
import logging
import inspect
import itertools
import contextlib

import cnrefine.tools as tools


LOCATION_EXCL_PAT = re.compile(
    '|'.join(
        (
            r'^<.*>$',
            r'/contextlib\.py$',
            r'/_pytest/',
            r'/pluggy/',
        )
    )
)
DATEFMT = '%Z %Y-%m-%d %H:%M:%S'  # KST 2022-03-23 22:12:34


def _make_logger():
    """rpy2 emits messages through the 'root' logger, so a named,
    non-propagating logger is used.
    """
    logger = logging.getLogger('cnrefine_logger')
    logger.propagate = False
    logger.setLevel(logging.DEBUG)

    streamhandler = logging.StreamHandler()
    streamhandler.setLevel(logging.INFO)
    logger.addHandler(streamhandler)

    return logger, streamhandler

LOGGER, STREAMHANDLER = _make_logger()


#############
# verbosity #
#############

@contextlib.contextmanager
def verbosity(verbose):
    """Within this context, debug messages are shown if "verbose" is True
    and warnings or above only if "verbose" is False. The previous handler
    level is restored on exit.
    """
    old_level = STREAMHANDLER.level
    if verbose is None:
        new_level = old_level
    elif verbose:
        new_level = logging.DEBUG
    else:
        new_level = logging.WARNING

    STREAMHANDLER.setLevel(new_level)
    try:
        yield
    finally:
        STREAMHANDLER.setLevel(old_level)


###############
# main logger #
###############

def log(msg, level='info', add_locstring=True):
    level = getattr(logging, level.upper())
    formatter = logging.Formatter(
        fmt=make_logformat(level, add_locstring=add_locstring),
        datefmt=DATEFMT,
    )
    STREAMHANDLER.setFormatter(formatter)

    if add_locstring:
        LOGGER.log(level, msg, extra={'locstring': make_locstring()})
    else:
        LOGGER.log(level, msg)


def make_locstring():
    finfo = get_calling_frameinfo()
    return f'{os.path.basename(finfo.filename)}: {finfo.function} (lineno {finfo.lineno}) |'


def make_logformat(level, add_locstring=False):
    """Helper of 'log'"""
    if level == logging.DEBUG:
        levelcol = tools.COLORS['cyan']
    elif level == logging.INFO:
        levelcol = tools.COLORS['green']
    elif level == logging.WARNING:
        levelcol = tools.COLORS['yellow']
    elif level == logging.ERROR:
        levelcol = tools.COLORS['orange']
    else:
        levelcol = tools.COLORS['red']

    levelname = levelcol + '%(levelname)s' + tools.COLORS['end']

    if add_locstring:
        return f'[%(asctime)s.%(msecs)03d {levelname}] %(locstring)s %(message)s'
    else:
        return f'[%(asctime)s.%(msecs)03d {levelname}] %(message)s'


def get_calling_frameinfo():
    """Helper of 'log'. Returns the first frame outside of this module."""
    frameinfo_groups = tuple(
        tuple(subiter) for key, subiter in
        itertools.groupby(inspect.stack(), key=(lambda x: x.filename))
    )
    for group in frameinfo_groups[1:]:
        frameinfo = group[0]
        if LOCATION_EXCL_PAT.search(frameinfo.filename) is None:
            return frameinfo
    return frameinfo_groups[-1][0]
