"""Tagged inputs. An input is either an object already loaded in memory or
a path to a file; the tag is resolved once at the entry point.
"""

import os
import dataclasses

from cnrefine.errors import UserInputError


@dataclasses.dataclass(frozen=True)
class InMemoryTable:
    value: object


@dataclasses.dataclass(frozen=True)
class FilePath:
    path: str

    def __post_init__(self):
        object.__setattr__(self, 'path', os.fspath(self.path))


def tag(obj):
    """Wraps str/PathLike as FilePath and anything else as InMemoryTable.
    Already tagged objects are returned as they are.
    """
    if isinstance(obj, (InMemoryTable, FilePath)):
        return obj
    elif isinstance(obj, (str, os.PathLike)):
        return FilePath(obj)
    else:
        return InMemoryTable(obj)


def resolve(source, loader, name='input'):
    """Returns the in-memory object. "loader" is called with the path of a
    FilePath source.
    """
    source = tag(source)
    if isinstance(source, InMemoryTable):
        return source.value

    if not os.path.exists(source.path):
        raise UserInputError(f'{name} file does not exist: {source.path}')
    return loader(source.path)
