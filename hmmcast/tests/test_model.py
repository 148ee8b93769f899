import numpy as np
import pytest

from hmmcast.prob import MISSING, DiscreteHMM, RandomPool


def _model(n=3, m=4, seed=0):
    return DiscreteHMM(n, m, rng=RandomPool(size=256, seed=seed))


@pytest.mark.parametrize("n,m", [(1, 1), (2, 2), (3, 5), (8, 18)])
def test_initialize_rows_are_distributions(n, m):
    model = _model(n, m, seed=n * 100 + m)
    assert model.start_probability.sum() == pytest.approx(1.0, abs=1e-9)
    np.testing.assert_allclose(model.transition.sum(axis=1), 1.0, atol=1e-9)
    np.testing.assert_allclose(model.emission.sum(axis=1), 1.0, atol=1e-9)
    assert (model.transition > 0).all() and (model.emission > 0).all()


def test_transpose_tracks_transition_after_training():
    model = _model(seed=3)
    model.train([0, 1, 2, 3, 2, 1, 0, 1], max_iter=5)
    np.testing.assert_array_equal(model._At, model.transition.T)


def test_parameters_are_read_only():
    model = _model()
    with pytest.raises(ValueError):
        model.transition[0, 0] = 0.5


@pytest.mark.parametrize("steps", [1, 2, 5, 12])
def test_predict_steps_are_distributions(steps):
    model = _model(seed=11)
    seq = [0, 1, 2, 3, 0, 0, 1, MISSING, 2, 3]
    model.train(seq, max_iter=20, tol=1e-6)
    preds = model.predict_steps(seq, steps)
    assert preds.shape == (steps, 4)
    np.testing.assert_allclose(preds.sum(axis=1), 1.0, atol=1e-6)
    np.testing.assert_array_equal(model.predict_next(seq, steps), preds[-1])


def test_predict_from_empty_sequence_starts_at_pi():
    model = _model(seed=5)
    expected = model.transition.T @ model.start_probability @ model.emission
    np.testing.assert_allclose(model.predict_steps([], 1)[0], expected)


def test_alternating_sequence_converges():
    seq = [0, 1] * 10
    best = None
    for seed in range(5):
        model = DiscreteHMM(2, 2, rng=RandomPool(size=64, seed=seed))
        summary = model.train(seq, max_iter=100, tol=1e-4)
        if best is None or summary.log_likelihood > best[0]:
            best = (summary.log_likelihood, model)
    # the sequence ends on 1, so 0 comes next
    assert best[1].predict_next(seq)[0] > 0.8


def test_short_sequence_is_a_no_op():
    model = _model(seed=2)
    before = (model.start_probability.copy(), model.transition.copy(), model.emission.copy())
    summary = model.train([1], max_iter=50)
    assert summary.iterations == 0
    np.testing.assert_array_equal(model.start_probability, before[0])
    np.testing.assert_array_equal(model.transition, before[1])
    np.testing.assert_array_equal(model.emission, before[2])
    model.train([], max_iter=50)
    np.testing.assert_array_equal(model.emission, before[2])


def test_missing_position_is_excluded_from_emission_update():
    seq = np.array([0, 1, 2, 1, 3, 0, 2, 2, 1, 0])
    masked_at = 4
    masked = seq.copy()
    masked[masked_at] = MISSING

    trained = _model(seed=21)
    reference = _model(seed=21)
    np.testing.assert_array_equal(trained.emission, reference.emission)

    # expectations from the pre-training parameters on the masked sequence
    T, n = seq.size, reference.n_states
    emis, alpha, beta, gamma = (np.zeros((T, n)) for _ in range(4))
    xi = np.zeros((T - 1, n, n))
    reference._emission_rows(masked, emis)
    reference._forward(emis, alpha)
    reference._backward(emis, beta)
    reference._expectations(emis, alpha, beta, gamma, xi)

    expected = np.zeros((n, reference.n_observations))
    keep = [t for t in range(T) if t != masked_at]
    for i in range(n):
        denom = sum(gamma[t, i] for t in keep)
        for k in range(reference.n_observations):
            expected[i, k] = sum(gamma[t, i] for t in keep if seq[t] == k) / denom

    trained.train(masked, max_iter=1)
    np.testing.assert_allclose(trained.emission, expected, rtol=1e-12, atol=1e-15)
    # the masked position still feeds the transition estimate
    assert gamma[masked_at].sum() == pytest.approx(1.0)


def test_zero_likelihood_does_not_produce_nan():
    model = DiscreteHMM(2, 2, rng=RandomPool(size=64, seed=1))
    model.set_parameters([0.5, 0.5], [[0.9, 0.1], [0.2, 0.8]], [[0.0, 1.0], [0.0, 1.0]])
    seq = np.array([1, 0, 1, 1])

    summary = model.train(seq, max_iter=10)
    assert summary.collapsed
    assert summary.iterations == 0
    assert np.isfinite(model.transition).all() and np.isfinite(model.emission).all()

    T, n = seq.size, 2
    emis, alpha, beta, gamma = (np.zeros((T, n)) for _ in range(4))
    xi = np.zeros((T - 1, n, n))
    model._emission_rows(seq, emis)
    assert model._forward(emis, alpha) == float("-inf")
    model._backward(emis, beta)
    model._expectations(emis, alpha, beta, gamma, xi)
    for arr in (alpha, beta, gamma, xi):
        assert not np.isnan(arr).any()

    preds = model.predict_steps(seq, 3)
    assert not np.isnan(preds).any()
    np.testing.assert_allclose(preds.sum(axis=1), 1.0, atol=1e-9)


def test_training_increases_likelihood():
    rng = np.random.default_rng(4)
    seq = rng.integers(0, 4, size=60)
    model = _model(seed=8)
    before = model.score(seq)
    summary = model.train(seq, max_iter=30)
    assert summary.iterations > 0
    assert model.score(seq) > before


def test_score_matches_hmmlearn():
    hmm = pytest.importorskip("hmmlearn.hmm")
    if not hasattr(hmm, "CategoricalHMM"):
        pytest.skip("hmmlearn without CategoricalHMM")
    model = _model(n=3, m=4, seed=13)
    seq = np.array([0, 1, 2, 3, 3, 2, 1, 0, 0, 2, 1, 3])
    model.train(seq, max_iter=10)

    ref = hmm.CategoricalHMM(n_components=3, n_features=4)
    ref.startprob_ = np.array(model.start_probability)
    ref.transmat_ = np.array(model.transition)
    ref.emissionprob_ = np.array(model.emission)
    assert model.score(seq) == pytest.approx(ref.score(seq.reshape(-1, 1)), rel=1e-8)


def test_invalid_arguments():
    with pytest.raises(ValueError):
        DiscreteHMM(0, 3)
    model = _model()
    with pytest.raises(ValueError):
        model.train([0, 4, 1])
    with pytest.raises(ValueError):
        model.score([-2, 1])
    with pytest.raises(ValueError):
        model.predict_steps([0, 1], -1)
    with pytest.raises(ValueError):
        model.predict_next([0, 1], 0)
    with pytest.raises(ValueError):
        model.set_parameters([1.0], np.eye(3), np.ones((3, 4)) / 4)
