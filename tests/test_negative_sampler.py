# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

import numpy as np
import pytest
from numpy.testing import assert_almost_equal

from latentkge.dataset import KGDataset, Triple
from latentkge.negative_sampler import (
    BernoulliNegativeSampler,
    FixedNegativeSampler,
    NegativeSamplingError,
    RandomNegativeSampler,
)

seed = 1234
n_entity = 50
n_relation_type = 5
n_sample = 200

np.random.seed(seed)

true_triples = [
    Triple(*t)
    for t in np.stack(
        [
            np.random.randint(n_entity, size=n_sample),
            np.random.randint(n_relation_type, size=n_sample),
            np.random.randint(n_entity, size=n_sample),
        ],
        axis=1,
    ).tolist()
]


@pytest.mark.parametrize("corruption_scheme", ["h", "t", "ht"])
def test_random_sampler(corruption_scheme: str) -> None:
    ns = RandomNegativeSampler(n_entity, corruption_scheme, seed=seed)

    negatives = [ns(triple) for triple in true_triples]
    n_head_corrupted = 0
    for triple, negative in zip(true_triples, negatives):
        assert isinstance(negative, Triple)
        assert negative != triple
        assert negative.relation == triple.relation
        assert 0 <= negative.head < n_entity and 0 <= negative.tail < n_entity
        # Exactly one of head and tail is replaced
        assert (negative.head == triple.head) != (negative.tail == triple.tail)
        n_head_corrupted += int(negative.head != triple.head)

    if corruption_scheme == "h":
        assert n_head_corrupted == n_sample
    elif corruption_scheme == "t":
        assert n_head_corrupted == 0
    else:
        assert 0 < n_head_corrupted < n_sample

    # Same seed, same negatives
    ns_copy = RandomNegativeSampler(n_entity, corruption_scheme, seed=seed)
    assert [ns_copy(triple) for triple in true_triples] == negatives


def test_random_sampler_filter() -> None:
    # All tail corruptions of (0, 0, 1) but (0, 0, 2) are known facts
    ns = RandomNegativeSampler(
        3,
        corruption_scheme="t",
        seed=seed,
        filter_triples=np.array([[0, 0, 0], [0, 0, 1]], dtype=np.int32),
    )
    for _ in range(20):
        assert ns(Triple(0, 0, 1)) == Triple(0, 0, 2)

    ns = RandomNegativeSampler(
        3,
        corruption_scheme="t",
        seed=seed,
        filter_triples=np.array([[0, 0, 0], [0, 0, 2]], dtype=np.int32),
        max_attempts=10,
    )
    with pytest.raises(NegativeSamplingError):
        ns(Triple(0, 0, 1))


def test_random_sampler_single_entity() -> None:
    ns = RandomNegativeSampler(1, corruption_scheme="ht", seed=seed)
    with pytest.raises(NegativeSamplingError):
        ns(Triple(0, 0, 0))


def test_random_sampler_invalid() -> None:
    with pytest.raises(ValueError):
        RandomNegativeSampler(n_entity, corruption_scheme="r", seed=seed)
    with pytest.raises(ValueError):
        RandomNegativeSampler(
            n_entity, corruption_scheme="h", seed=seed, max_attempts=0
        )


def test_bernoulli_sampler() -> None:
    triples = np.array(
        [
            # relation 0: one-to-many, 1 head with 4 tails
            [0, 0, 1],
            [0, 0, 2],
            [0, 0, 3],
            [0, 0, 4],
            # relation 1: many-to-one, 2 heads with the same tail
            [5, 1, 7],
            [6, 1, 7],
            # relation 2: one-to-one, duplicates do not count
            [8, 2, 9],
            [8, 2, 9],
        ],
        dtype=np.int32,
    )
    ns = BernoulliNegativeSampler(triples, n_entity=10, seed=seed)

    assert_almost_equal(ns.tail_probability, [1 / 5, 2 / 3, 1 / 2])
    assert ns.corrupt_tail_probability(Triple(0, 0, 1)) == pytest.approx(0.2)
    # Unseen relation types fall back to uniform choice
    assert ns.corrupt_tail_probability(Triple(0, 3, 1)) == 0.5

    for triple in triples.tolist():
        negative = ns(Triple(*triple))
        assert negative.relation == triple[1]
        assert tuple(negative) not in set(map(tuple, triples.tolist()))

    # Heads of relation 0 are corrupted more often than tails
    heads_corrupted = sum(
        int(ns(Triple(0, 0, 1)).head != 0) for _ in range(n_sample)
    )
    assert heads_corrupted > n_sample // 2


def test_fixed_sampler() -> None:
    negatives = np.array([[0, 0, 2], [1, 0, 0]], dtype=np.int32)
    ns = FixedNegativeSampler(negatives)
    sampled = [ns(Triple(0, 0, 1)) for _ in range(5)]
    assert sampled == [
        Triple(0, 0, 2),
        Triple(1, 0, 0),
        Triple(0, 0, 2),
        Triple(1, 0, 0),
        Triple(0, 0, 2),
    ]

    ns = FixedNegativeSampler([Triple(0, 0, 2)], cycle=False)
    assert ns(Triple(0, 0, 1)) == Triple(0, 0, 2)
    with pytest.raises(NegativeSamplingError):
        ns(Triple(0, 0, 1))

    with pytest.raises(ValueError):
        FixedNegativeSampler([])


def test_bernoulli_sampler_from_dataset() -> None:
    ds = KGDataset(
        n_entity=3,
        n_relation_type=1,
        triples={
            "train": np.array([[0, 0, 1]], dtype=np.int32),
            "test": np.array([[0, 0, 2]], dtype=np.int32),
        },
    )

    ns = BernoulliNegativeSampler.from_dataset(ds, seed=seed)
    assert_almost_equal(ns.tail_probability, [0.5])
    negatives = {ns(Triple(0, 0, 1)) for _ in range(n_sample)}
    # Test triples are known facts, never sampled as negatives
    assert negatives == {Triple(1, 0, 1), Triple(2, 0, 1), Triple(0, 0, 0)}

    ns = BernoulliNegativeSampler.from_dataset(ds, seed=seed, filter_all_parts=False)
    negatives = {ns(Triple(0, 0, 1)) for _ in range(n_sample)}
    assert Triple(0, 0, 2) in negatives
