import numpy as np
import sklearn.mixture

import cnrefine.logutils as logutils
from cnrefine.mappingbias.betabinom import BetaBinomialFit, get_informative_mask


class BetaFitClusters:
    """Gaussian mixture over (mu, rho) of well supported sites. Each
    component gives a centroid fit and a log prior from the number of
    sites hard-assigned to it.
    """

    def __init__(self, centroids, counts):
        assert len(centroids) == len(counts)
        self.centroids = list(centroids)
        self.counts = np.asarray(counts, dtype=int)

    def __repr__(self):
        return f'<BetaFitClusters (ncluster={len(self.centroids)}, counts={self.counts.tolist()})>'

    @property
    def ncluster(self):
        return len(self.centroids)

    @classmethod
    def fit(cls, fits, max_components, min_rho, max_rho, random_state=0):
        """Number of components (1 to "max_components") is chosen by the
        lowest BIC.
        """
        data = np.array([[x.mu, x.rho] for x in fits], dtype=float)
        assert data.shape[0] > 0

        best_gm = None
        best_bic = np.inf
        for ncomp in range(1, min(max_components, data.shape[0]) + 1):
            gm = sklearn.mixture.GaussianMixture(
                n_components=ncomp,
                covariance_type='full',
                random_state=random_state,
            ).fit(data)
            bic = gm.bic(data)
            if bic < best_bic:
                best_bic = bic
                best_gm = gm

        labels = best_gm.predict(data)
        counts = np.bincount(labels, minlength=best_gm.n_components)

        centroids = list()
        used_counts = list()
        for idx in range(best_gm.n_components):
            if counts[idx] == 0:
                continue
            mu, rho = best_gm.means_[idx]
            centroids.append(
                BetaBinomialFit(
                    mu=float(np.clip(mu, 1e-6, 1 - 1e-6)),
                    rho=float(np.clip(rho, min_rho, max_rho)),
                )
            )
            used_counts.append(counts[idx])

        logutils.log(
            f'Beta-binomial fits were clustered into {len(centroids)} component(s) (BIC {best_bic:.1f}).',
            level='debug',
        )
        return cls(centroids, used_counts)

    def get_log_priors(self):
        """Returns (cluster log priors, fallback log prior). The fallback
        candidate counts as one pseudo observation.
        """
        total = self.counts.sum() + 1
        with np.errstate(divide='ignore'):
            return np.log(self.counts / total), np.log(1 / total)

    def assign(self, alt, ref, fallback_mu, fallback_rho, min_informative):
        """Returns the index of the best centroid, or None if the site has
        too few informative samples, if the empirical-Bayes fallback scores
        best, or if every candidate has zero likelihood.
        """
        alt = np.asarray(alt, dtype=float)
        ref = np.asarray(ref, dtype=float)
        mask = get_informative_mask(alt, ref)
        if mask.sum() < min_informative:
            return None

        alt = alt[mask]
        depth = alt + ref[mask]
        cluster_priors, fallback_prior = self.get_log_priors()

        scores = [
            centroid.loglik(alt, depth) + prior
            for centroid, prior in zip(self.centroids, cluster_priors)
        ]
        if np.isnan(fallback_mu):
            scores.append(-np.inf)
        else:
            fallback = BetaBinomialFit(mu=fallback_mu, rho=fallback_rho)
            scores.append(fallback.loglik(alt, depth) + fallback_prior)
        scores = np.array(scores, dtype=float)
        scores[np.isnan(scores)] = -np.inf

        if not np.isfinite(scores).any():
            return None
        best = int(np.argmax(scores))
        if best == self.ncluster:
            return None
        return best


def cluster_and_assign(
    fits, alt, ref, eb_fractions, params, position_specific=True,
):
    """Args:
        fits: list of BetaBinomialFit or None, one per site
        alt, ref: sites x samples count matrices
        eb_fractions: empirical-Bayes alt fraction of each site

    Returns: (mus, rhos, clustered); fits of sites without an own fit (or
    all assignable sites when "position_specific" is False) are replaced
    by their cluster centroid. When "position_specific" is False, sites
    left unassigned lose their own fit.
    """
    nsite = len(fits)
    mus = np.array([np.nan if x is None else x.mu for x in fits], dtype=float)
    rhos = np.array([np.nan if x is None else x.rho for x in fits], dtype=float)
    clustered = np.zeros(nsite, dtype=bool)

    fitted = [x for x in fits if x is not None]
    if len(fitted) < params.num_betafit_clusters:
        logutils.log(
            (
                f'Too few beta-binomial fits ({len(fitted)}) for clustering '
                f'(num_betafit_clusters={params.num_betafit_clusters}).'
            ),
            level='info',
        )
        return mus, rhos, clustered

    logutils.log(f'Clustering beta binomial fits...', level='info')
    clusters = BetaFitClusters.fit(
        fitted,
        max_components=params.num_betafit_clusters,
        min_rho=params.min_betafit_rho,
        max_rho=params.max_betafit_rho,
        random_state=params.seed,
    )

    for idx in range(nsite):
        if position_specific and (fits[idx] is not None):
            continue
        cluster_idx = clusters.assign(
            alt[idx, :],
            ref[idx, :],
            fallback_mu=eb_fractions[idx],
            fallback_rho=params.min_betafit_rho,
            min_informative=params.min_normals_assign_betafit,
        )
        if cluster_idx is None:
            if not position_specific:
                # small panels use only clustered fits; the empirical-Bayes value applies
                mus[idx] = np.nan
                rhos[idx] = np.nan
            continue
        centroid = clusters.centroids[cluster_idx]
        mus[idx] = centroid.mu
        rhos[idx] = centroid.rho
        clustered[idx] = True

    logutils.log(
        f'Assigning ({clustered.sum()}/{nsite}) variants a clustered beta binomial fit.',
        level='info',
    )
    return mus, rhos, clustered
