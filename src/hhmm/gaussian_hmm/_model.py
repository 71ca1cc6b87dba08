from typing import NamedTuple
import jax.numpy as jnp
import jax.random as jr
from jax import lax

from tensorflow_probability.substrates.jax.distributions import (
    Categorical, MultivariateNormalFullCovariance as MVNFull)

__all__ = [
    'Parameters',
    'PriorParameters',
    'NormalizedGaussianHMMStatistics',
    'log_likelihood',
    'sample',
]

# Parameters and statistics for a Gaussian HMM with a Dirichlet prior
# on the hidden Markov Chain and normal inverse wishart prior on emissions

class Parameters(NamedTuple):
    initial_probs: jnp.ndarray          # [k]
    transition_probs: jnp.ndarray       # [k,k]
    emission_means: jnp.ndarray         # [k,d]
    emission_covariances: jnp.ndarray   # [k,d,d]

class PriorParameters(NamedTuple):
    initial_probs_conc: jnp.ndarray
    transition_probs_conc: jnp.ndarray
    emission_loc: jnp.ndarray
    emission_conc: jnp.ndarray
    emission_scale: jnp.ndarray
    emission_df: jnp.ndarray

class NormalizedGaussianHMMStatistics(NamedTuple):
    initial_pseudocounts: jnp.ndarray
    transition_pseudocounts: jnp.ndarray
    emission_weights: jnp.ndarray
    emission_xxT: jnp.ndarray
    emission_x: jnp.ndarray

# -----------------------------------------------------------------------------

def log_likelihood(params, emissions):
    """Log likelihood of every emission under every state's Gaussian.

    Arguments
        params (Parameters)
        emissions[t,d]

    Returns
        loglik[t,k]
    """
    # Batch shape [k], broadcast against [t,1,d]
    emission_dists = MVNFull(params.emission_means, params.emission_covariances)
    return emission_dists.log_prob(emissions[..., None, :])

def sample(params, num_timesteps, seed):
    """Sample a state path from the chain, then one emission per state.

    Returns
        states[num_timesteps]
        emissions[num_timesteps,d]
    """
    seed_init, seed_chain, seed_emissions = jr.split(seed, 3)

    def _step(state, this_seed):
        next_state = Categorical(probs=params.transition_probs[state]).sample(seed=this_seed)
        return next_state, next_state

    initial_state = Categorical(probs=params.initial_probs).sample(seed=seed_init)
    _, next_states = lax.scan(_step, initial_state, jr.split(seed_chain, num_timesteps - 1))
    states = jnp.concatenate([initial_state[None], next_states])

    emissions = MVNFull(params.emission_means[states],
                        params.emission_covariances[states]).sample(seed=seed_emissions)
    return states, emissions
