import jax.numpy as jnp
from jax import jit, vmap, lax
from jax.scipy.special import logsumexp
from jax.tree_util import tree_map
from tqdm.auto import trange

from dynamax.hidden_markov_model.inference import (
    hmm_smoother, compute_transition_probs
)

from hhmm.gaussian_hmm._initialization import initialize_statistics
from hhmm.gaussian_hmm._model import *

__all__ = [
    'e_step',
    'm_step',
    'constrain',
    'check_psd',
    'fit_em',
    'forward_step',
    'filter_sequence',
]

# Per-step emission log likelihoods further than this below the best state
# are raised to it, so that the probability-space smoother never normalizes
# an all-zero vector.
LOG_LIKELIHOOD_FLOOR = 50.

# ==============================================================================
# EXPECTATION FUNCTIONS
# ==============================================================================

def floored_log_likelihood(params, emissions):
    """Return log_likelihood(params, emissions), floored per timestep."""
    lls = log_likelihood(params, emissions)
    return jnp.maximum(lls, lls.max(axis=-1, keepdims=True) - LOG_LIKELIHOOD_FLOOR)

@jit
def _sequence_statistics(params, emissions):
    """Summed sufficient statistics and marginal log likelihood of one sequence."""

    # Run the smoother to calculate the posterior
    posterior = hmm_smoother(params.initial_probs,
                             params.transition_probs,
                             floored_log_likelihood(params, emissions))

    weights = posterior.smoothed_probs
    summed_stats = NormalizedGaussianHMMStatistics(
        initial_pseudocounts=posterior.initial_probs,
        transition_pseudocounts=compute_transition_probs(params.transition_probs, posterior),
        emission_weights=jnp.sum(weights, axis=0),
        emission_xxT=jnp.einsum("tk,ti,tj->kij", weights, emissions, emissions),
        emission_x=jnp.einsum("tk,ti->ki", weights, emissions),
    )
    return summed_stats, posterior.marginal_loglik

def e_step(params, sequences):
    """Compute normalized expected sufficient statistics under the posterior.

    Sequences may have different lengths, so the smoother runs once per
    sequence (and is compiled once per distinct length).

    Arguments
        params (Parameters)
        sequences (list of arrays[t,d])

    Returns
        normd_stats (NormalizedGaussianHMMStatistics([k,...]))
        normalizer (ndarray[k,])
        marginal_loglik (float)
    """

    num_states = params.initial_probs.shape[-1]
    emission_dim = params.emission_means.shape[-1]

    summed_stats = initialize_statistics(num_states, emission_dim)
    marginal_loglik = 0.
    num_emissions = 0
    for emissions in sequences:
        seq_stats, seq_loglik = _sequence_statistics(params, jnp.asarray(emissions))
        summed_stats = tree_map(jnp.add, summed_stats, seq_stats)
        marginal_loglik += seq_loglik
        num_emissions += len(emissions)

    # Normalize statistics by total number of emissions. Perform after summation
    # since we typically work in the regime of (num_emissions >> 1 > posterior probs)
    normd_stats = tree_map(lambda stat: stat / num_emissions, summed_stats)
    normalizer = num_emissions * jnp.ones(num_states)

    return normd_stats, normalizer, marginal_loglik

# ==============================================================================
# MAXIMIZATION FUNCTIONS
# ==============================================================================

def niw_convert_mean_to_natural(loc, conc, df, scale):
    """Convert NIW mean parameters to natural parameters."""
    dim = loc.shape[-1]
    eta_1 = df + dim + 2
    eta_2 = scale + conc * jnp.outer(loc, loc)
    eta_3 = conc * loc
    eta_4 = conc
    return eta_1, eta_2, eta_3, eta_4

def niw_convert_natural_to_mean(eta_1, eta_2, eta_3, eta_4):
    """Convert NIW natural parameters to mean parameters."""
    dim = eta_3.shape[-1]
    loc = eta_3 / eta_4
    conc = eta_4
    scale = eta_2 - jnp.outer(eta_3, eta_3) / eta_4
    df = eta_1 - dim - 2
    return loc, conc, df, scale

@jit
def m_step(prior_params, normalized_stats, normalizer):
    """Compute MAP estimate of Gaussian HMM parameters.

    Implicitly assumes that num_states > 1.

    Arguments
        prior_params (PriorParameters): Parameter values of prior distributions
        normalized_stats (NormalizedGaussianHMMStatistics([k,...]))
        normalizer (ndarray([k,]))

    Returns
        map_params (Parameters)
    """

    normd_one = jnp.nan_to_num(1./normalizer, nan=0.0)
    dirichlet_mode = (lambda normd_alpha:
        (normd_alpha - normd_one) / jnp.sum(normd_alpha - normd_one, axis=-1, keepdims=True)
    )

    # Calculate mode of posterior initial distribution (Dirichlet)
    posterior_initial_conc = (
        normalized_stats.initial_pseudocounts
        + jnp.nan_to_num(prior_params.initial_probs_conc / normalizer, nan=0.0)
    )
    initial_probs = dirichlet_mode(posterior_initial_conc)

    # Calculate mode of posterior transition distribution (Dirichlet)
    posterior_transition_conc = (
        normalized_stats.transition_pseudocounts
        + jnp.nan_to_num(prior_params.transition_probs_conc / normalizer, nan=0.0)
    )
    transition_probs = dirichlet_mode(posterior_transition_conc)

    # Calculate mode of posterior emission distribution (NIW)
    def _single_emission_m_step(prior_params, normd_stats, norm):
        natural_prior_params = niw_convert_mean_to_natural(*prior_params)

        # Normalize prior parameters
        normd_natural_prior_params \
            = tree_map(lambda eta: jnp.nan_to_num(eta / norm, nan=0.0), natural_prior_params)

        # Compute posterior parameters
        normd_emission_suff_stats = (
            normd_stats.emission_weights, normd_stats.emission_xxT,
            normd_stats.emission_x, normd_stats.emission_weights)
        normd_natural_posterior_params \
            = tree_map(jnp.add, normd_natural_prior_params, normd_emission_suff_stats)

        # Convert natural posterior parameters to mean parameterization
        posterior_loc, _, _, posterior_scale \
            = niw_convert_natural_to_mean(*normd_natural_posterior_params)

        # Return modal values of posterior distribution
        modal_cov = posterior_scale / normd_natural_posterior_params[0]
        modal_mean = posterior_loc

        return modal_cov, modal_mean

    prior_niw_mean_params = (
        prior_params.emission_loc, prior_params.emission_conc,
        prior_params.emission_df, prior_params.emission_scale
    )
    covs, means = vmap(_single_emission_m_step)(
        prior_niw_mean_params, normalized_stats, normalizer
    )

    return Parameters(
        initial_probs=initial_probs,
        transition_probs=transition_probs,
        emission_means=means,
        emission_covariances=covs,
    )

def constrain(params, initial_mask=None, transition_mask=None, covariance_floor=0.):
    """Project parameters onto the chain topology and regularize covariances.

    Arguments
        params (Parameters)
        initial_mask[k]: Zero where the chain may not start
        transition_mask[k,k]: Zero where the chain may not transition
        covariance_floor (float or [d,]): Added to every covariance diagonal

    Returns
        Parameters
    """

    initial_probs = params.initial_probs
    if initial_mask is not None:
        initial_probs = initial_probs * initial_mask
        initial_probs /= initial_probs.sum(axis=-1, keepdims=True)

    transition_probs = params.transition_probs
    if transition_mask is not None:
        transition_probs = transition_probs * transition_mask
        transition_probs /= transition_probs.sum(axis=-1, keepdims=True)

    emission_dim = params.emission_means.shape[-1]
    covs = params.emission_covariances + jnp.eye(emission_dim) * covariance_floor
    covs = 0.5 * (covs + jnp.swapaxes(covs, -1, -2))

    return params._replace(initial_probs=initial_probs,
                           transition_probs=transition_probs,
                           emission_covariances=covs)

def check_psd(covs):
    """Raise ValueError if covariance matrices are not positive definite."""
    _eigvals = jnp.linalg.eigvalsh(covs)
    if jnp.any(_eigvals <= 0.):
        _states = jnp.unique(jnp.nonzero(_eigvals <= 0.)[0])
        raise ValueError(
            f'`emission_covariances` of states {_states.tolist()} are not positive definite. '
            'Consider increasing the covariance regularization.')

# ==============================================================================
#
# FULL-BATCH EM ALGORITHM
#
# ==============================================================================

def fit_em(initial_params, prior_params, sequences, num_epochs=50, tolerance=None,
           initial_mask=None, transition_mask=None, covariance_floor=0., verbose=True):
    """Estimate model parameters from emissions using Expectation-Maximization (EM).

    Arguments
        initial_params (Parameters([k,...]))
        prior_params (PriorParameters([k,...]))
        sequences (list of arrays[t,d]): Variable-length emission sequences
        num_epochs (int): Maximum number of EM iterations over full dataset
        tolerance (float): If given, stop once the relative change of the
            marginal log likelihood between two epochs falls below it
        initial_mask, transition_mask, covariance_floor: See `constrain`
        verbose (bool): If true, print progress bar.

    Returns
        fitted_params (Parameters([k,...]))
        lps (ndarray[num_epochs_run,]): Marginal log likelihood of the
            parameters entering each epoch

    Raises
        ValueError: if the statistics or the fitted parameters are degenerate
    """

    log_probs = []
    params = initial_params
    pbar = trange(num_epochs) if verbose else range(num_epochs)
    for epoch in pbar:
        normalized_stats, normalizer, marginal_loglik = e_step(params, sequences)
        if not jnp.isfinite(marginal_loglik):
            raise ValueError(f'Epoch {epoch}: marginal log likelihood is not finite.')

        map_params = m_step(prior_params, normalized_stats, normalizer)
        params = constrain(map_params, initial_mask, transition_mask, covariance_floor)

        # Check no NaNs in parameters and that M-step emission covariance is PSD
        if any(jnp.any(jnp.isnan(arr)) for arr in params):
            raise ValueError(f'Epoch {epoch}: NaN detected in parameters.')
        check_psd(params.emission_covariances)

        log_probs.append(marginal_loglik)
        if verbose:
            pbar.set_postfix({'lp': float(marginal_loglik)})

        if (tolerance is not None and len(log_probs) > 1
            and jnp.abs(log_probs[-1] - log_probs[-2]) <= tolerance * jnp.abs(log_probs[-2])):
            break

    return params, jnp.asarray(log_probs)

# ==============================================================================
#
# FILTERING
#
# ==============================================================================

def forward_step(params, predicted_probs, emission):
    """Advance the forward recursion by one emission, in log space.

    Arguments
        params (Parameters)
        predicted_probs[k]: p(z_t | x_{1:t-1}), i.e. `initial_probs` at t=0
        emission[d]

    Returns
        filtered_probs[k]: p(z_t | x_{1:t})
        next_predicted_probs[k]: p(z_{t+1} | x_{1:t})
        log_norm (float): log p(x_t | x_{1:t-1})
    """
    lls = log_likelihood(params, emission[None])[0]
    log_joint = jnp.log(predicted_probs) + lls
    log_norm = logsumexp(log_joint)
    filtered_probs = jnp.exp(log_joint - log_norm)
    return filtered_probs, filtered_probs @ params.transition_probs, log_norm

@jit
def filter_sequence(params, emissions):
    """Run the forward recursion over a whole sequence.

    Returns
        marginal_loglik (float)
        filtered_probs[t,k]
    """

    def _step(predicted_probs, emission):
        filtered_probs, next_predicted_probs, log_norm \
            = forward_step(params, predicted_probs, emission)
        return next_predicted_probs, (filtered_probs, log_norm)

    _, (filtered_probs, log_norms) = lax.scan(_step, params.initial_probs, emissions)
    return log_norms.sum(), filtered_probs

