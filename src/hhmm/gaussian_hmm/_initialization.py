import jax.numpy as jnp
import jax.random as jr
import numpy as onp

from sklearn.cluster import KMeans

from hhmm.gaussian_hmm._model import (Parameters,
                                      PriorParameters,
                                      NormalizedGaussianHMMStatistics)

TRANSITION_MODES = ('left_right', 'ergodic')
INIT_METHODS = ('segments', 'kmeans')


def topology_masks(num_states, transition_mode='left_right'):
    """Return (initial_mask[k], transition_mask[k,k]) for the chain topology.

    A left-right chain starts in state 0 and may only stay or advance by one
    state; an ergodic chain allows every transition.
    """
    if transition_mode == 'left_right':
        initial_mask = jnp.zeros(num_states).at[0].set(1.)
        transition_mask = jnp.eye(num_states) + jnp.eye(num_states, k=1)
    elif transition_mode == 'ergodic':
        initial_mask = jnp.ones(num_states)
        transition_mask = jnp.ones((num_states, num_states))
    else:
        raise ValueError(
            f"Expected transition_mode to be one of {TRANSITION_MODES}, received {transition_mode}.")

    return initial_mask, transition_mask

def _segment_init(num_states, sequences, emission_covs_scale=1.,):
    """Initialize emission means by cutting every sequence into `num_states`
    consecutive segments of (nearly) equal length and averaging each segment.

    Sequences shorter than `num_states` contribute their nearest frame to the
    states they cannot fill.
    """
    emissions_dim = sequences[0].shape[-1]
    buckets = [[] for _ in range(num_states)]
    for seq in sequences:
        num_frames = len(seq)
        for state in range(num_states):
            start = min(int(onp.floor(state * num_frames / num_states)), num_frames - 1)
            stop = max(int(onp.floor((state+1) * num_frames / num_states)), start + 1)
            buckets[state].append(seq[start:stop])

    emission_means = jnp.asarray(onp.stack([
        onp.concatenate(bucket, axis=0).mean(axis=0) for bucket in buckets
    ]))
    emission_covs = jnp.tile(jnp.eye(emissions_dim) * emission_covs_scale, (num_states, 1, 1))

    return emission_means, emission_covs

def _kmeans_init(seed, num_states, data, emission_covs_scale=1.,):
    """Initialize GaussianHMM emission parameters from data via k-means algorithm.

    Args:
        seed (jr.PRNGKey):
        num_states (int): Number of clusters to fit
        data (onp.array): Data to fit on, shape (N, emissions_dim)
        emission_covs_scale (float or None): Scale of emission covariances
            initialized to block identity matrices. If None, bootstrap emission
            covariances from kmeans labels. Useful when data is not normalized.
    """
    emissions_dim = data.shape[-1]
    if len(data) < num_states:
        raise ValueError(
            f'k-means initialization needs at least {num_states} frames, received {len(data)}.')

    # Set emission means and covariances based on fitted k-means clusters
    kmeans = KMeans(num_states,
                    init='k-means++', n_init=1,
                    random_state=int(seed[-1])).fit(data)
    emission_means = jnp.asarray(kmeans.cluster_centers_)

    # If no covariance scale provided, bootstrap from cluster assignments
    if emission_covs_scale is None:
        labels = kmeans.labels_
        emission_covs = []
        for state in range(num_states):
            _assgns = (labels==state)

            if _assgns.sum() > 1:
                emission_covs.append(jnp.atleast_2d(jnp.cov(data[_assgns], rowvar=False)))
            else: # If states only have 1 assignment, set arbitrary covariance
                emission_covs.append(jnp.eye(emissions_dim))
        emission_covs = jnp.stack(emission_covs)

    # Otherwise, set covariance to scaled identity
    else:
        emission_covs = jnp.tile(
            jnp.eye(emissions_dim) * emission_covs_scale, (num_states, 1, 1))

    return emission_means, emission_covs

def initialize_model(seed, method, num_states, sequences, transition_mode='left_right',
                     emission_covs_scale=1.):
    """Initialize a Gaussian HMM from variable-length training sequences.

    Arguments
        seed (jr.PRNGKey)
        method (str): Initialization method, either 'segments' or 'kmeans'
        num_states (int): Number of states to initialize
        sequences (list of arrays[t,d]): Training sequences, at least one
        transition_mode (str): Chain topology, 'left_right' or 'ergodic'
        emission_covs_scale (float): Scale of the initial identity covariances

    Return
        Parameters
    """

    initial_mask, transition_mask = topology_masks(num_states, transition_mode)

    seed_init, seed_trans, seed_emissions = jr.split(seed, 3)

    initial_probs = jr.dirichlet(seed_init, jnp.ones(num_states)) * initial_mask
    initial_probs /= initial_probs.sum()
    transition_probs = jr.dirichlet(seed_trans, jnp.ones(num_states), (num_states,)) * transition_mask
    transition_probs /= transition_probs.sum(axis=-1, keepdims=True)

    if method == 'segments':
        emission_means, emission_covs \
                        = _segment_init(num_states, sequences, emission_covs_scale)
    elif method == 'kmeans':
        emission_means, emission_covs \
                        = _kmeans_init(seed_emissions, num_states,
                                       onp.concatenate(sequences, axis=0), emission_covs_scale)
    else:
        raise ValueError(f"Expected method to be one of {INIT_METHODS}, received {method}.")

    return Parameters(
        initial_probs=initial_probs,
        transition_probs=transition_probs,
        emission_means=emission_means,
        emission_covariances=emission_covs,
    )

# ------------------------------------------------------------------------------

def initialize_prior_from_scalar_values(num_states,
                                        emission_dim,
                                        initial_probs_conc=1.1,
                                        transition_probs_conc=1.1,
                                        emission_loc=0.,
                                        emission_conc=1e-4,
                                        emission_scale=1e-4,
                                        emission_extra_df=0.1,):
    """Initialize PriorParameters from scalar values, with dimension (num_states,)."""
    return PriorParameters(
        initial_probs_conc=initial_probs_conc * jnp.ones(num_states),
        transition_probs_conc=transition_probs_conc * jnp.ones((num_states, num_states)),
        emission_loc=emission_loc * jnp.ones((num_states, emission_dim)),
        emission_conc=emission_conc * jnp.ones(num_states),
        emission_scale=emission_scale * jnp.tile(jnp.eye(emission_dim), (num_states, 1, 1)),
        emission_df=(emission_dim + emission_extra_df) * jnp.ones(num_states),
    )

# ------------------------------------------------------------------------------

def initialize_statistics(num_states, emission_dim, batch_shape=()):
    """Initial GaussianHMM statistics with zero arrays of appropriate shape."""

    return NormalizedGaussianHMMStatistics(
        initial_pseudocounts=jnp.zeros((*batch_shape, num_states)),
        transition_pseudocounts=jnp.zeros((*batch_shape, num_states, num_states,)),
        emission_weights=jnp.zeros((*batch_shape, num_states)),
        emission_xxT=jnp.zeros((*batch_shape, num_states, emission_dim, emission_dim)),
        emission_x=jnp.zeros((*batch_shape, num_states, emission_dim)),
    )
