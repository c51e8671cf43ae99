class UserInputError(ValueError):
    """Invalid or contradictory parameters, malformed or missing input files.
    Never retried.
    """
    pass


class RuntimeInvariantError(AssertionError):
    """Internal consistency violation, indicating a logic bug."""
    pass


class InvalidOrder(RuntimeInvariantError):
    """Interval tables given to a join are not sorted by
    (chromosome rank, start).
    """
    pass


def check_fraction(value, name):
    if not (0 <= value <= 1):
        raise UserInputError(f'{name} ({value}) must be within [0, 1].')
