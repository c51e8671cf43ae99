import functools
import inspect

from cnrefine.errors import UserInputError


def check_argnames(sig, argnames, deconame, func):
    missing = set(argnames).difference(sig.parameters.keys())
    if missing:
        raise Exception(
            f'Decorator "{deconame}" got argument names {sorted(missing)} '
            f'which are not parameters of "{func.__name__}".'
        )


def make_arg_checker(deconame, mapping, is_valid, describe):
    """Builds a decorator which binds the call arguments and raises
    UserInputError when is_valid(value, mapping[argname]) is False.
    """
    def decorator(func):
        sig = inspect.signature(func)
        check_argnames(sig, mapping.keys(), deconame, func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            ba = sig.bind(*args, **kwargs)
            ba.apply_defaults()
            for key, rule in mapping.items():
                val = ba.arguments[key]
                if not is_valid(val, rule):
                    raise UserInputError(
                        f'{func.__name__}: "{key}" ({val!r}) {describe(rule)}.'
                    )
            return func(*args, **kwargs)

        return wrapper

    return decorator


def get_deco_arg_choices(mapping):
    """Args:
        mapping: {'argname': (valid_value1, valid_value2, ...), ...}
    """
    return make_arg_checker(
        'get_deco_arg_choices',
        mapping,
        (lambda val, choices: val in choices),
        (lambda choices: f'must be one of {tuple(choices)}'),
    )


def get_deco_arg_range(mapping):
    """Args:
        mapping: {'argname': (low, high), ...}; low < value <= high.
            None values pass unchecked.
    """
    return make_arg_checker(
        'get_deco_arg_range',
        mapping,
        (lambda val, bounds: (val is None) or (bounds[0] < val <= bounds[1])),
        (lambda bounds: f'must be in ({bounds[0]}, {bounds[1]}]'),
    )
