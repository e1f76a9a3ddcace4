import typing as t

import numpy as np


def all_gt(vals, threshold):
    a = not isinstance(vals, int) or vals > threshold
    b = not hasattr(vals, "__len__") or all(map(lambda x: x > threshold, vals))
    return a and b


def all_positive(vals):
    return all_gt(vals, 0)


def replicate(vals, n):
    if hasattr(vals, "__len__"):
        assert len(vals) == n
        return tuple(vals)

    return tuple([vals] * n)


def _variance_he(fan_in: int, fan_out: int) -> float:
    return 2.0 / fan_in


def _variance_xavier(fan_in: int, fan_out: int) -> float:
    return 1.0 / (3.0 * fan_in)


def _variance_xavier_norm(fan_in: int, fan_out: int) -> float:
    return 2.0 / (fan_in + fan_out)


_WEIGHT_INIT_VARIANCE = {
    "he": _variance_he,
    "xavier": _variance_xavier,
    "xavier_norm": _variance_xavier_norm,
}


def get_weight_init_dist_params(
    rule: str, dist: str, fan_in: int, fan_out: t.Optional[int] = None
):
    """Scale of the initial weight distribution for a named rule.

    Both distributions get the variance of the rule: the standard deviation
    is returned for 'normal' and the (low, high) pair for 'uniform'.
    """
    assert dist in {"normal", "uniform"}

    if rule not in _WEIGHT_INIT_VARIANCE:
        raise ValueError(
            "Unknown weight initialization rule '{}' (expected one of {}).".format(
                rule, sorted(_WEIGHT_INIT_VARIANCE)
            )
        )

    if fan_out is None:
        fan_out = fan_in

    var = _WEIGHT_INIT_VARIANCE[rule](int(fan_in), int(fan_out))

    if dist == "normal":
        return np.sqrt(var)

    high = np.sqrt(3.0 * var)
    return -high, high


def as_rng(rng: t.Optional[t.Union[int, np.random.Generator]] = None):
    if isinstance(rng, np.random.Generator):
        return rng

    return np.random.default_rng(rng)


def is_finite(*arrays) -> bool:
    return all(bool(np.all(np.isfinite(arr))) for arr in arrays)
