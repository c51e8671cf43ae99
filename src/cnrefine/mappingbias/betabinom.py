import dataclasses

import numpy as np
import scipy.stats
import scipy.optimize

import cnrefine.tools as tools
import cnrefine.logutils as logutils


INFORMATIVE_FRACTION_RANGE = (0.05, 0.9)
MU_EPSILON = 1e-6


@dataclasses.dataclass(frozen=True)
class BetaBinomialFit:
    """Mean "mu" and intra-class correlation "rho" of a beta-binomial
    distribution. a = mu * (1/rho - 1), b = (1 - mu) * (1/rho - 1)
    """
    mu: float
    rho: float

    @property
    def shapes(self):
        return get_shapes(self.mu, self.rho)

    def logpmf(self, alt, depth):
        a, b = self.shapes
        return scipy.stats.betabinom.logpmf(alt, depth, a, b)

    def loglik(self, alt, depth):
        return np.sum(self.logpmf(alt, depth))


def get_shapes(mu, rho):
    mu = np.clip(mu, MU_EPSILON, 1 - MU_EPSILON)
    scale = 1 / rho - 1
    return mu * scale, (1 - mu) * scale


#######################
# informative samples #
#######################

def get_alt_fractions(alt, ref):
    alt = np.asarray(alt, dtype=float)
    ref = np.asarray(ref, dtype=float)
    depth = alt + ref
    with np.errstate(divide='ignore', invalid='ignore'):
        return np.where(depth > 0, alt / depth, np.nan)


def get_informative_mask(alt, ref):
    """Not missing, with alt fraction strictly within (0.05, 0.9)"""
    fractions = get_alt_fractions(alt, ref)
    with np.errstate(invalid='ignore'):
        return (
            ~np.isnan(fractions)
            & (fractions > INFORMATIVE_FRACTION_RANGE[0])
            & (fractions < INFORMATIVE_FRACTION_RANGE[1])
        )


###########
# fitting #
###########

def get_moment_estimates(alt, depth, min_rho, max_rho):
    mu = alt.sum() / depth.sum()
    mu = np.clip(mu, 0.01, 0.99)

    pearson = ((alt - depth * mu) ** 2) / (depth * mu * (1 - mu))
    dispersion = pearson.sum() / max(len(alt) - 1, 1)
    mean_depth = depth.mean()
    if mean_depth > 1:
        rho = (dispersion - 1) / (mean_depth - 1)
    else:
        rho = min_rho
    rho = np.clip(rho, max(min_rho, 1e-3), max_rho)

    return mu, rho


def fit_betabinom(alt, depth, min_rho=1e-4, max_rho=0.2, label=None):
    """Maximum likelihood fit of an intercept-only beta-binomial model.
    Returns a BetaBinomialFit, or None when the optimizer does not converge.
    "rho" is clamped into [min_rho, max_rho].
    """
    alt = np.asarray(alt, dtype=float)
    depth = np.asarray(depth, dtype=float)

    def negloglik(params):
        mu = tools.expit(params[0])
        rho = tools.expit(params[1])
        a, b = get_shapes(mu, rho)
        result = -np.sum(scipy.stats.betabinom.logpmf(alt, depth, a, b))
        if np.isnan(result):
            return np.inf
        return result

    mu0, rho0 = get_moment_estimates(alt, depth, min_rho, max_rho)
    optresult = scipy.optimize.minimize(
        negloglik,
        x0=np.array([tools.logit(mu0), tools.logit(rho0)]),
        method='Nelder-Mead',
        options={'maxiter': 2000, 'xatol': 1e-6, 'fatol': 1e-8},
    )
    if (not optresult.success) or (not np.isfinite(optresult.fun)):
        logutils.log(
            (
                f'Could not fit beta binomial distribution for {label} '
                f'(alt {",".join(str(int(x)) for x in alt)}, '
                f'depth {",".join(str(int(x)) for x in depth)}): {optresult.message}'
            ),
            level='warning',
        )
        return None

    mu = float(tools.expit(optresult.x[0]))
    rho = float(np.clip(tools.expit(optresult.x[1]), min_rho, max_rho))
    return BetaBinomialFit(mu=mu, rho=rho)


def fit_site(alt, ref, params, min_normals_betafit=None, label=None):
    """Fits one site from its per-sample counts (NaN = missing sample).
    Only informative samples enter the fit. Returns None when there are
    fewer than "min_normals_betafit" informative samples, when the median
    depth over non-missing samples is below "min_median_coverage_betafit",
    or when the fit fails.
    """
    if min_normals_betafit is None:
        min_normals_betafit = params.min_normals_betafit

    alt = np.asarray(alt, dtype=float)
    ref = np.asarray(ref, dtype=float)
    mask = get_informative_mask(alt, ref)
    if mask.sum() < min_normals_betafit:
        return None

    depth = alt + ref
    if np.nanmedian(depth) < params.min_median_coverage_betafit:
        return None

    return fit_betabinom(
        alt[mask],
        depth[mask],
        min_rho=params.min_betafit_rho,
        max_rho=params.max_betafit_rho,
        label=label,
    )
