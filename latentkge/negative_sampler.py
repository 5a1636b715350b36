# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

"""
Samplers of negative (corrupted) triples, consumed one at a time
by the models' training step.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional, Set, Union

import numpy as np
from numpy.typing import NDArray

from latentkge.dataset import KGDataset, Triple, iter_triples


class NegativeSamplingError(RuntimeError):
    """
    The negative sampler could not produce a corrupted triple.
    """


class BaseNegativeSampler(ABC):
    """
    Base class for negative samplers.
    """

    @abstractmethod
    def __call__(self, triple: Triple) -> Triple:
        """
        Sample a negative triple for a true triple.

        :param triple:
            The true triple.

        :return:
            A triple structurally different from :code:`triple`.

        :raises NegativeSamplingError:
            If no negative triple can be produced.
        """
        raise NotImplementedError


class RandomNegativeSampler(BaseNegativeSampler):
    """
    Corrupt the head or the tail of a triple with a random entity.
    """

    #: Which entity to corrupt; "h", "t", "ht"
    corruption_scheme: str

    def __init__(
        self,
        n_entity: int,
        corruption_scheme: str,
        seed: int,
        filter_triples: Optional[NDArray[np.int32]] = None,
        max_attempts: int = 100,
    ) -> None:
        """
        Initialize random negative sampler.

        :param n_entity:
            Number of entities in the knowledge graph.
        :param corruption_scheme:
            "h": corrupt head entities;
            "t": corrupt tail entities;
            "ht": corrupt head or tail entities with equal probability.
        :param seed:
            Seed of RNG.
        :param filter_triples: shape: (n_triple, 3)
            If provided, corrupted triples appearing in this set
            are rejected and resampled. Default: None.
        :param max_attempts:
            Number of draws before giving up on a triple. Default: 100.
        """
        if corruption_scheme not in ["h", "t", "ht"]:
            raise ValueError(
                f"Corruption scheme {corruption_scheme}"
                f" not supported by {self.__class__.__name__}"
            )
        if n_entity <= 0:
            raise ValueError("`n_entity` needs to be positive")
        if max_attempts <= 0:
            raise ValueError("`max_attempts` needs to be positive")
        self.n_entity = n_entity
        self.corruption_scheme = corruption_scheme
        self.seed = seed
        self.rng = np.random.default_rng(seed=self.seed)
        self.max_attempts = max_attempts
        self.known_triples: Set[Triple] = (
            set(iter_triples(filter_triples)) if filter_triples is not None else set()
        )

    def corrupt_tail_probability(self, triple: Triple) -> float:
        """
        Probability of corrupting the tail (instead of the head) of a triple.

        :param triple:
            The true triple.

        :return:
            Probability in [0, 1].
        """
        if self.corruption_scheme == "h":
            return 0.0
        elif self.corruption_scheme == "t":
            return 1.0
        return 0.5

    def sample_entity(self, exclude: int) -> int:
        """
        Sample an entity ID uniformly, excluding one entity.

        :param exclude:
            The entity ID not to sample.

        :return:
            Entity ID in `[0, n_entity)`, different from :code:`exclude`.
        """
        if self.n_entity < 2:
            raise NegativeSamplingError(
                "Cannot corrupt a triple in a graph with a single entity"
            )
        # Shift draws past the excluded ID to stay uniform over the others
        e = int(self.rng.integers(self.n_entity - 1))
        return e + 1 if e >= exclude else e

    # docstr-coverage: inherited
    def __call__(self, triple: Triple) -> Triple:
        triple = Triple(*triple)
        p_tail = self.corrupt_tail_probability(triple)
        for _ in range(self.max_attempts):
            if self.rng.random() < p_tail:
                negative = triple._replace(tail=self.sample_entity(triple.tail))
            else:
                negative = triple._replace(head=self.sample_entity(triple.head))
            if negative not in self.known_triples:
                return negative
        raise NegativeSamplingError(
            f"No negative triple found for {tuple(triple)}"
            f" in {self.max_attempts} attempts"
        )


class BernoulliNegativeSampler(RandomNegativeSampler):
    """
    Corrupt heads of one-to-many relations and tails of many-to-one relations
    more often (Bernoulli sampling).

    For each relation, the tail is corrupted with probability
    `hpt / (tph + hpt)`, with `tph` the average number of tails per head
    and `hpt` the average number of heads per tail.
    """

    def __init__(
        self,
        triples: NDArray[np.int32],
        n_entity: int,
        seed: int,
        filter_triples: Optional[NDArray[np.int32]] = None,
        filter_training_triples: bool = True,
        max_attempts: int = 100,
    ) -> None:
        """
        Initialize Bernoulli negative sampler.

        :param triples: shape: (n_triple, 3)
            Training triples, used to compute relation statistics.
        :param n_entity:
            see :meth:`RandomNegativeSampler.__init__`
        :param seed:
            see :meth:`RandomNegativeSampler.__init__`
        :param filter_triples:
            see :meth:`RandomNegativeSampler.__init__`
        :param filter_training_triples:
            Also reject corrupted triples appearing in :code:`triples`.
            Default: True.
        :param max_attempts:
            see :meth:`RandomNegativeSampler.__init__`
        """
        super(BernoulliNegativeSampler, self).__init__(
            n_entity=n_entity,
            corruption_scheme="ht",
            seed=seed,
            filter_triples=filter_triples,
            max_attempts=max_attempts,
        )
        triples = np.asarray(triples)
        if filter_training_triples:
            self.known_triples.update(iter_triples(triples))

        n_relation_type = int(triples[:, 1].max()) + 1 if len(triples) else 0
        self.tail_probability = np.full(n_relation_type, 0.5)
        for r in range(n_relation_type):
            rel_triples = triples[triples[:, 1] == r]
            if len(rel_triples) == 0:
                continue
            n_unique = len(np.unique(rel_triples[:, [0, 2]], axis=0))
            # tph: tails per head, hpt: heads per tail
            tph = n_unique / len(np.unique(rel_triples[:, 0]))
            hpt = n_unique / len(np.unique(rel_triples[:, 2]))
            self.tail_probability[r] = hpt / (tph + hpt)

    @classmethod
    def from_dataset(
        cls,
        dataset: KGDataset,
        seed: int,
        part: str = "train",
        filter_all_parts: bool = True,
        max_attempts: int = 100,
    ) -> "BernoulliNegativeSampler":
        """
        Bernoulli sampler with relation statistics from one part
        of a dataset.

        :param dataset:
            The knowledge graph dataset.
        :param seed:
            Seed of RNG.
        :param part:
            The part whose triples are used for relation statistics.
            Default: "train".
        :param filter_all_parts:
            Reject corrupted triples appearing in any part of the dataset,
            not only in :code:`part`. Default: True.
        :param max_attempts:
            see :meth:`RandomNegativeSampler.__init__`

        :return:
            The negative sampler.
        """
        return cls(
            dataset.triples[part],
            n_entity=dataset.n_entity,
            seed=seed,
            filter_triples=dataset.all_triples() if filter_all_parts else None,
            max_attempts=max_attempts,
        )

    # docstr-coverage: inherited
    def corrupt_tail_probability(self, triple: Triple) -> float:
        if triple.relation < len(self.tail_probability):
            return float(self.tail_probability[triple.relation])
        return 0.5


class FixedNegativeSampler(BaseNegativeSampler):
    """
    Return predetermined negative triples, in order.
    """

    def __init__(
        self,
        negatives: Union[NDArray[np.int32], Iterable[Triple]],
        cycle: bool = True,
    ) -> None:
        """
        Initialize fixed negative sampler.

        :param negatives: shape: (n_negative, 3)
            Negative triples [head_id, relation_id, tail_id],
            returned one per call.
        :param cycle:
            Restart from the first negative once all have been returned.
            If False, further calls raise :class:`NegativeSamplingError`.
            Default: True.
        """
        if isinstance(negatives, np.ndarray):
            self.negatives = list(iter_triples(negatives))
        else:
            self.negatives = [Triple(*t) for t in negatives]
        if not self.negatives:
            raise ValueError("At least one negative triple needs to be provided")
        self.cycle = cycle
        self.position = 0

    # docstr-coverage: inherited
    def __call__(self, triple: Triple) -> Triple:
        if self.position == len(self.negatives):
            if not self.cycle:
                raise NegativeSamplingError("All fixed negative triples consumed")
            self.position = 0
        negative = self.negatives[self.position]
        self.position += 1
        return negative
