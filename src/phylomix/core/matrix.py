"""
Matrix operations for phylogenetic likelihood calculations.

Transition probabilities for reversible models are computed from a single
eigendecomposition per rate matrix, then evaluated for many branch lengths
at once.
"""

import numpy as np


def create_reversible_Q(
    rates: np.ndarray, pi: np.ndarray, normalize: bool = True
) -> np.ndarray:
    """
    Create a reversible rate matrix from exchangeabilities and frequencies.

    Parameters
    ----------
    rates : ndarray, shape (n, n)
        Symmetric exchangeability matrix (r[i,j] = r[j,i])
    pi : ndarray, shape (n,)
        Stationary distribution (equilibrium frequencies)
    normalize : bool, default=True
        If True, scale Q to one expected substitution per unit time

    Returns
    -------
    Q : ndarray, shape (n, n)
        Rate matrix with Q[i,j] = r[i,j] * pi[j] and rows summing to zero

    Examples
    --------
    >>> rates = np.ones((4, 4)) - np.eye(4)  # JC69
    >>> Q = create_reversible_Q(rates, np.ones(4) / 4)
    """
    Q = rates * pi[np.newaxis, :]
    np.fill_diagonal(Q, 0.0)
    np.fill_diagonal(Q, -Q.sum(axis=1))

    if normalize:
        expected_rate = -np.dot(pi, Q.diagonal())
        Q /= expected_rate

    return Q


def eigen_decompose_rev(Q: np.ndarray, pi: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Eigendecompose a reversible rate matrix as Q = U @ diag(eigenvalues) @ V.

    Q is symmetrized through sqrt(pi) so that ``numpy.linalg.eigh`` can be
    used, which is both faster and numerically stable.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Reversible rate matrix (pi_i Q_ij = pi_j Q_ji)
    pi : ndarray, shape (n,)
        Stationary distribution

    Returns
    -------
    eigenvalues : ndarray, shape (n,)
    U : ndarray, shape (n, n)
        Right eigenvectors (columns)
    V : ndarray, shape (n, n)
        Left eigenvectors (rows), V = U^-1
    """
    sqrt_pi = np.sqrt(pi)
    Q_sym = Q * sqrt_pi[:, np.newaxis] / sqrt_pi[np.newaxis, :]
    # Remove rounding asymmetry before eigh
    Q_sym = 0.5 * (Q_sym + Q_sym.T)

    eigenvalues, eigenvectors = np.linalg.eigh(Q_sym)

    U = eigenvectors / sqrt_pi[:, np.newaxis]
    V = eigenvectors.T * sqrt_pi[np.newaxis, :]

    return eigenvalues, U, V


def transition_matrices(
    eigenvalues: np.ndarray, U: np.ndarray, V: np.ndarray, times: np.ndarray
) -> np.ndarray:
    """
    Compute P(t) = exp(Q t) for a batch of times.

    Parameters
    ----------
    eigenvalues, U, V : ndarray
        Output of :func:`eigen_decompose_rev`
    times : ndarray, shape (m,)
        Branch lengths multiplied by category rates

    Returns
    -------
    ndarray, shape (m, n, n)
        Transition probability matrices; tiny negative round-off is clipped
    """
    times = np.atleast_1d(np.asarray(times, dtype=float))
    exp_lambda = np.exp(times[:, np.newaxis] * eigenvalues[np.newaxis, :])
    P = np.einsum('ik,mk,kj->mij', U, exp_lambda, V)
    return np.clip(P, 0.0, None)


def check_detailed_balance(Q: np.ndarray, pi: np.ndarray, rtol: float = 1e-10) -> bool:
    """
    Test whether Q satisfies detailed balance with respect to pi.

    Detailed balance: pi_i * Q[i,j] = pi_j * Q[j,i] for all i, j.
    """
    flux = pi[:, np.newaxis] * Q
    return bool(np.allclose(flux, flux.T, rtol=rtol, atol=1e-14))
