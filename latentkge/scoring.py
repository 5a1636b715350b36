# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

"""
Scoring functions and single-triple training rules,
specific to each KGE model.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence, Tuple, Union

import einops
import numpy as np
import torch
from numpy.typing import NDArray

from latentkge.dataset import Triple, iter_triples
from latentkge.embedding import (
    EMBEDDING_DTYPE,
    init_constant_norm,
    init_KGE_uniform,
    init_positive_uniform,
    init_uniform_norm,
    initialize_embedding,
)
from latentkge.negative_sampler import BaseNegativeSampler
from latentkge.utils import IdLike, check_ids, clip_to_unit_ball, floor_and_normalize

logger = logging.getLogger(__name__)

#: Additive guard for denominators and probabilities
EPS = 1e-100

Initializer = Union[torch.Tensor, Callable[..., torch.Tensor]]


class BaseScoreFunction(torch.nn.Module, ABC):
    """
    Base class for scoring functions.

    Models are trained one triple at a time by :meth:`train_triple`;
    a training driver brackets each pass over the training triples
    with :meth:`begin_epoch` and :meth:`end_epoch`
    (see :meth:`train_epoch`).
    """

    #: Number of entities in the knowledge graph
    n_entity: int

    #: Number of relation types in the knowledge graph
    n_relation_type: int

    #: Source of negative triples for margin-based training
    negative_sampler: Optional[BaseNegativeSampler]

    def __init__(
        self,
        n_entity: int,
        n_relation_type: int,
        negative_sampler: Optional[BaseNegativeSampler] = None,
    ) -> None:
        """
        Initialize scoring function.

        :param n_entity:
            Number of entities in the knowledge graph.
        :param n_relation_type:
            Number of relation types in the knowledge graph.
        :param negative_sampler:
            Negative sampler, called once per training step by models
            trained with negative triples. Default: None.
        """
        super().__init__()
        if n_entity <= 0 or n_relation_type <= 0:
            raise ValueError(
                "`n_entity` and `n_relation_type` need to be positive,"
                f" got {n_entity}, {n_relation_type}"
            )
        self.n_entity = n_entity
        self.n_relation_type = n_relation_type
        self.negative_sampler = negative_sampler

    @abstractmethod
    def score_triple(
        self,
        head: IdLike,
        relation: IdLike,
        tail: IdLike,
    ) -> torch.Tensor:
        """
        Score (h,r,t) triples. Higher scores denote more plausible facts.

        :param head: shape: () or (batch_size,)
            IDs of head entities.
        :param relation: shape: () or (batch_size,)
            IDs of relation types.
        :param tail: shape: () or (batch_size,)
            IDs of tail entities.

        :return: shape: () or (batch_size,)
            Scores of triples.
        """
        raise NotImplementedError

    @abstractmethod
    def train_triple(self, triple: Triple) -> bool:
        """
        Perform one training step on a true triple.

        :param triple:
            The (h,r,t) triple.

        :return:
            True if parameters (or accumulators) were updated,
            False if the step was skipped.
        """
        raise NotImplementedError

    def begin_epoch(self) -> None:
        """
        Called before the first :meth:`train_triple` of each epoch.
        """

    def end_epoch(self, last_epoch: bool = False) -> None:
        """
        Called after the last :meth:`train_triple` of each epoch.

        :param last_epoch:
            Whether this is the final training epoch.
        """

    def train_epoch(
        self,
        triples: Union[NDArray[np.int32], Sequence[Triple]],
        last_epoch: bool = False,
    ) -> int:
        """
        Train on all triples, in the given order.

        :param triples: shape: (n_triple, 3)
            Training triples [head_id, relation_id, tail_id].
        :param last_epoch:
            see :meth:`end_epoch`

        :return:
            Number of training steps that updated the model.
        """
        self.begin_epoch()
        n_update = 0
        for triple in iter_triples(np.asarray(triples)):
            n_update += int(self.train_triple(triple))
        self.end_epoch(last_epoch)
        return n_update

    def forward(self, triples: Union[torch.Tensor, NDArray[np.int32]]) -> torch.Tensor:
        """
        Score a batch of triples.

        :param triples: shape: (batch_size, 3)
            Triples [head_id, relation_id, tail_id].

        :return: shape: (batch_size,)
            see :meth:`BaseScoreFunction.score_triple`
        """
        triples = torch.as_tensor(triples, dtype=torch.long)
        return self.score_triple(triples[:, 0], triples[:, 1], triples[:, 2])

    def score_heads(self, relation: int, tail: int) -> torch.Tensor:
        """
        Score all entities as heads of a (?, r, t) query.

        :param relation:
            ID of the relation type.
        :param tail:
            ID of the tail entity.

        :return: shape: (n_entity,)
            Scores of (e, r, t) for all entities e.
        """
        heads = torch.arange(self.n_entity)
        return self.score_triple(
            heads, torch.full_like(heads, relation), torch.full_like(heads, tail)
        )

    def score_tails(self, head: int, relation: int) -> torch.Tensor:
        """
        Score all entities as tails of a (h, r, ?) query.

        :param head:
            ID of the head entity.
        :param relation:
            ID of the relation type.

        :return: shape: (n_entity,)
            Scores of (h, r, e) for all entities e.
        """
        tails = torch.arange(self.n_entity)
        return self.score_triple(
            torch.full_like(tails, head), torch.full_like(tails, relation), tails
        )

    def check_ids(self, head: IdLike, relation: IdLike, tail: IdLike) -> None:
        """
        Raise :class:`IndexError` if any ID is out of range.
        """
        check_ids(head, self.n_entity, "entity")
        check_ids(tail, self.n_entity, "entity")
        check_ids(relation, self.n_relation_type, "relation")

    def as_triple(self, triple: Sequence[IdLike]) -> Triple:
        """
        Convert to a range-checked :class:`Triple` of python ints.
        """
        h, r, t = (int(x) for x in triple)
        self.check_ids(h, r, t)
        return Triple(h, r, t)

    def sample_negative(self, triple: Triple) -> Triple:
        """
        Draw the negative counterpart of a true triple.

        :param triple:
            The true triple.

        :return:
            The range-checked negative triple.
        """
        if self.negative_sampler is None:
            raise ValueError(
                f"{self.__class__.__name__} requires a negative sampler for training"
            )
        return self.as_triple(self.negative_sampler(triple))


class LatentTopicModel(BaseScoreFunction):
    """
    Probabilistic mixture of latent topics, trained by expectation-maximization.

    For each topic, head (tail) embeddings of all (relation, entity) pairs
    form a distribution over pairs. Accumulation of topic responsibilities
    happens in :meth:`train_triple`, re-estimation in :meth:`end_epoch`.
    """

    def __init__(
        self,
        n_entity: int,
        n_relation_type: int,
        n_topic: int,
        head_initializer: Initializer = init_positive_uniform,
        tail_initializer: Initializer = init_positive_uniform,
    ) -> None:
        """
        Initialize latent topic model.

        :param n_entity:
            see :meth:`BaseScoreFunction.__init__`
        :param n_relation_type:
            see :meth:`BaseScoreFunction.__init__`
        :param n_topic:
            Number of latent topics.
        :param head_initializer:
            Initialization function or table for head-side embeddings,
            shape (n_relation_type, n_entity, n_topic). Entries need to be
            non-negative.
        :param tail_initializer:
            Initialization function or table for tail-side embeddings.
        """
        super().__init__(n_entity, n_relation_type)
        if n_topic <= 0:
            raise ValueError(f"`n_topic` needs to be positive, got {n_topic}")
        self.n_topic = n_topic
        logger.info(
            "LatentTopicModel: n_topic=%d, n_entity=%d, n_relation_type=%d",
            n_topic,
            n_entity,
            n_relation_type,
        )

        shape = (n_relation_type, n_entity, n_topic)
        self.head_embedding = initialize_embedding(shape, head_initializer)
        self.tail_embedding = initialize_embedding(shape, tail_initializer)
        if (self.head_embedding < 0).any() or (self.tail_embedding < 0).any():
            raise ValueError("Topic embeddings need to be non-negative")
        self.topic_embedding = initialize_embedding(
            (n_topic,), torch.full((n_topic,), 1.0 / n_topic)
        )
        self.normalize_to_distribution()

        self.register_buffer(
            "relation_normalizer",
            torch.empty((n_relation_type, n_topic), dtype=EMBEDDING_DTYPE),
        )
        self.update_relation_normalizer()

        self.register_buffer(
            "head_accumulator", torch.zeros(shape, dtype=EMBEDDING_DTYPE), False
        )
        self.register_buffer(
            "tail_accumulator", torch.zeros(shape, dtype=EMBEDDING_DTYPE), False
        )
        self.register_buffer(
            "topic_accumulator", torch.zeros(n_topic, dtype=EMBEDDING_DTYPE), False
        )
        self.n_accumulated = 0
        self.in_epoch = False

    def normalize_to_distribution(self) -> None:
        """
        Normalize each topic column of the head and tail tables over all
        (relation, entity) pairs, add a uniform floor to every entry and
        normalize the topic prior.
        """
        for table in [self.head_embedding, self.tail_embedding]:
            total = einops.reduce(table, "rel ent topic -> topic", "sum")
            table /= torch.where(total > EPS, total, torch.ones_like(total))
        laplace = 0.01 / (self.n_entity * self.n_relation_type)
        self.head_embedding += laplace
        self.tail_embedding += laplace
        self.topic_embedding /= self.topic_embedding.sum()

    def update_relation_normalizer(self) -> None:
        """
        Recompute the per-relation topic distribution
        from the head and tail tables.
        """
        relation_mass = einops.reduce(
            self.head_embedding + self.tail_embedding,
            "rel ent topic -> rel topic",
            "sum",
        )
        self.relation_normalizer.copy_(
            relation_mass / (relation_mass.sum(dim=-1, keepdim=True) + EPS)
        )

    # docstr-coverage: inherited
    def score_triple(
        self,
        head: IdLike,
        relation: IdLike,
        tail: IdLike,
    ) -> torch.Tensor:
        self.check_ids(head, relation, tail)
        topic_prob = (
            self.head_embedding[relation, head]
            * self.tail_embedding[relation, tail]
            * self.topic_embedding
            / self.relation_normalizer[relation]
        )
        return topic_prob.sum(dim=-1) + EPS

    # docstr-coverage: inherited
    def train_triple(self, triple: Triple) -> bool:
        h, r, t = self.as_triple(triple)
        prob = self.score_triple(h, r, t)
        weight = self.topic_embedding / prob
        self.head_accumulator[r, h] += self.head_embedding[r, h] * weight
        self.tail_accumulator[r, t] += self.tail_embedding[r, t] * weight
        self.topic_accumulator += weight
        self.n_accumulated += 1
        return True

    # docstr-coverage: inherited
    def begin_epoch(self) -> None:
        self.head_accumulator.zero_()
        self.tail_accumulator.zero_()
        self.topic_accumulator.zero_()
        self.n_accumulated = 0
        self.in_epoch = True

    # docstr-coverage: inherited
    def end_epoch(self, last_epoch: bool = False) -> None:
        if not self.in_epoch:
            raise RuntimeError("end_epoch() called without a matching begin_epoch()")
        self.in_epoch = False
        if self.n_accumulated == 0:
            logger.warning("No triples accumulated in epoch, parameters left unchanged")
            return

        self.head_embedding.copy_(self.head_accumulator)
        self.tail_embedding.copy_(self.tail_accumulator)
        self.topic_embedding.copy_(self.topic_accumulator)
        self.normalize_to_distribution()
        self.update_relation_normalizer()

        logger.log(
            logging.INFO if last_epoch else logging.DEBUG,
            "Topic prior: %s",
            np.array2string(self.topic_embedding.detach().numpy(), precision=4),
        )


class TranslationalModel(BaseScoreFunction):
    """
    Margin-based model comparing the head and tail entity embeddings,
    each rescaled elementwise by a relation-specific vector.
    """

    def __init__(
        self,
        n_entity: int,
        n_relation_type: int,
        embedding_size: int,
        alpha: float,
        margin: float,
        negative_sampler: Optional[BaseNegativeSampler] = None,
        entity_initializer: Initializer = init_KGE_uniform,
        relation_in_initializer: Initializer = init_KGE_uniform,
        relation_out_initializer: Initializer = init_constant_norm,
    ) -> None:
        """
        Initialize translational model.

        :param n_entity:
            see :meth:`BaseScoreFunction.__init__`
        :param n_relation_type:
            see :meth:`BaseScoreFunction.__init__`
        :param embedding_size:
            Size of entity and relation embeddings.
        :param alpha:
            Learning rate.
        :param margin:
            Training threshold: pairs of true and negative triples whose
            score difference exceeds the margin are skipped.
        :param negative_sampler:
            see :meth:`BaseScoreFunction.__init__`
        :param entity_initializer:
            Initialization function or table for entity embeddings.
            Rows are then projected on the unit ball.
        :param relation_in_initializer:
            Initialization function or table for head-side relation embeddings.
            Rows are then normalized.
        :param relation_out_initializer:
            Initialization function or table for tail-side relation embeddings.
            Rows are then normalized.
        """
        super().__init__(n_entity, n_relation_type, negative_sampler)
        if embedding_size <= 0:
            raise ValueError(
                f"`embedding_size` needs to be positive, got {embedding_size}"
            )
        if alpha <= 0:
            raise ValueError(f"Learning rate `alpha` needs to be positive, got {alpha}")
        self.embedding_size = embedding_size
        self.alpha = alpha
        self.margin = margin
        logger.info(
            "TranslationalModel: dimension=%d, learning rate=%g, training threshold=%g",
            embedding_size,
            alpha,
            margin,
        )

        self.entity_embedding = initialize_embedding(
            (n_entity, embedding_size), entity_initializer
        )
        self.relation_in_embedding = initialize_embedding(
            (n_relation_type, embedding_size), relation_in_initializer
        )
        self.relation_out_embedding = initialize_embedding(
            (n_relation_type, embedding_size), relation_out_initializer
        )
        self.entity_embedding.copy_(clip_to_unit_ball(self.entity_embedding))
        for table in [self.relation_in_embedding, self.relation_out_embedding]:
            table.copy_(torch.nn.functional.normalize(table, dim=-1))

    def translation_residual(
        self, head: IdLike, relation: IdLike, tail: IdLike
    ) -> torch.Tensor:
        """
        Difference of the relation-scaled head and tail embeddings.

        :return: shape: (*, embedding_size)
        """
        return (
            self.entity_embedding[head] * self.relation_in_embedding[relation]
            - self.entity_embedding[tail] * self.relation_out_embedding[relation]
        )

    # docstr-coverage: inherited
    def score_triple(
        self,
        head: IdLike,
        relation: IdLike,
        tail: IdLike,
    ) -> torch.Tensor:
        self.check_ids(head, relation, tail)
        return -torch.abs(self.translation_residual(head, relation, tail)).sum(dim=-1)

    def subgradient_step(self, triple: Triple, alpha: float) -> None:
        """
        Move the embeddings of a triple along the L1 subgradient,
        towards a better score if `alpha > 0`, a worse one if `alpha < 0`.
        The relation tail-side embedding is kept fixed.

        :param triple:
            The triple to update.
        :param alpha:
            Signed learning rate.
        """
        h, r, t = triple
        head = self.entity_embedding[h].clone()
        relation_in = self.relation_in_embedding[r].clone()
        relation_out = self.relation_out_embedding[r]
        grad = -torch.sign(self.translation_residual(h, r, t))

        self.entity_embedding[h] += alpha * grad * relation_in
        self.relation_in_embedding[r] += alpha * grad * head
        self.entity_embedding[t] -= alpha * grad * relation_out

    # docstr-coverage: inherited
    def train_triple(self, triple: Triple) -> bool:
        triple = self.as_triple(triple)
        negative = self.sample_negative(triple)
        if self.score_triple(*triple) - self.score_triple(*negative) > self.margin:
            return False

        self.subgradient_step(triple, self.alpha)
        self.subgradient_step(negative, -self.alpha)

        entities = torch.tensor(
            sorted({triple.head, triple.tail, negative.head, negative.tail})
        )
        self.entity_embedding[entities] = clip_to_unit_ball(
            self.entity_embedding[entities]
        )
        relations = torch.tensor(sorted({triple.relation, negative.relation}))
        for table in [self.relation_in_embedding, self.relation_out_embedding]:
            table[relations] = torch.nn.functional.normalize(table[relations], dim=-1)
        return True


def exponential_product_score(
    head_feature: torch.Tensor, tail_feature: torch.Tensor, sigma: float
) -> torch.Tensor:
    """
    Product of the feature masses, damped by the exponential
    of the L1 distance between features.

    :param head_feature: shape: (*, embedding_size)
    :param tail_feature: shape: (*, embedding_size)
    :param sigma:
        Temperature.

    :return: shape: (*,)
        Non-negative scores.
    """
    return (
        head_feature.sum(dim=-1)
        * tail_feature.sum(dim=-1)
        * torch.exp(-torch.abs(head_feature - tail_feature).sum(dim=-1) / sigma)
    )


def factor_derivative_step(
    entity_embedding: torch.Tensor,
    relation_head_embedding: torch.Tensor,
    relation_tail_embedding: torch.Tensor,
    triple: Triple,
    alpha: float,
    sigma: float,
) -> None:
    """
    In-place gradient step on the exponential-product score of a triple,
    followed by the projection of all touched rows on strictly positive
    unit vectors.

    All increments are computed from the embeddings before the step.
    Entries are strictly positive before the step (rows are floored at
    `1/embedding_size**5` after every update), so the divisions
    of the tail-side terms are well defined.

    :param entity_embedding: shape: (n_entity, embedding_size)
    :param relation_head_embedding: shape: (n_relation_type, embedding_size)
    :param relation_tail_embedding: shape: (n_relation_type, embedding_size)
    :param triple:
        The triple to update.
    :param alpha:
        Signed learning rate: positive to increase the score, negative
        to decrease it.
    :param sigma:
        Temperature.
    """
    h, r, t = triple
    head = entity_embedding[h].clone()
    tail = entity_embedding[t].clone()
    relation_head = relation_head_embedding[r].clone()
    relation_tail = relation_tail_embedding[r].clone()

    head_feature = head * relation_head
    tail_feature = tail * relation_tail
    head_mass = head_feature.sum()
    tail_mass = tail_feature.sum()
    grad = -torch.sign(head_feature - tail_feature) / sigma

    entity_embedding[h] += (
        alpha * grad * relation_head + alpha * relation_head / head_mass
    )
    relation_head_embedding[r] += alpha * grad * head + alpha * head / head_mass
    entity_embedding[t] += (
        -alpha * grad * relation_tail + alpha * tail_feature / tail / tail_mass
    )
    relation_tail_embedding[r] += (
        -alpha * grad * tail + alpha * tail_feature / relation_tail / tail_mass
    )

    floor = 1.0 / head.shape[-1] ** 5
    for table, idx in [
        (entity_embedding, h),
        (entity_embedding, t),
        (relation_head_embedding, r),
        (relation_tail_embedding, r),
    ]:
        table[idx] = floor_and_normalize(table[idx], floor)


class FactorEKL(BaseScoreFunction, ABC):
    """
    Elementwise factor model scored by the KL divergence between
    head and tail features.

    Features are the elementwise products of entity embeddings
    with the head-side (tail-side) relation embeddings.
    """

    def __init__(
        self,
        n_entity: int,
        n_relation_type: int,
        embedding_size: int,
        alpha: float,
        margin: float,
        smoothing: float,
        negative_sampler: Optional[BaseNegativeSampler] = None,
        entity_initializer: Initializer = init_uniform_norm,
        relation_initializer: Initializer = init_uniform_norm,
    ) -> None:
        """
        Initialize factor model.

        :param n_entity:
            see :meth:`BaseScoreFunction.__init__`
        :param n_relation_type:
            see :meth:`BaseScoreFunction.__init__`
        :param embedding_size:
            Size of entity and relation embeddings.
        :param alpha:
            Learning rate.
        :param margin:
            Training threshold.
        :param smoothing:
            Lower bound of features in the KL score.
        :param negative_sampler:
            see :meth:`BaseScoreFunction.__init__`
        :param entity_initializer:
            Initialization function or table for entity embeddings.
        :param relation_initializer:
            Initialization function or table for head-side and tail-side
            relation embeddings.
        """
        super().__init__(n_entity, n_relation_type, negative_sampler)
        if embedding_size <= 0:
            raise ValueError(
                f"`embedding_size` needs to be positive, got {embedding_size}"
            )
        if alpha <= 0:
            raise ValueError(f"Learning rate `alpha` needs to be positive, got {alpha}")
        if smoothing < 0:
            raise ValueError(f"`smoothing` needs to be non-negative, got {smoothing}")
        self.embedding_size = embedding_size
        self.alpha = alpha
        self.margin = margin
        self.smoothing = smoothing
        #: Elementwise minimum of embeddings after each update
        self.floor = 1.0 / embedding_size**5
        logger.info(
            "%s: dimension=%d, learning rate=%g, training threshold=%g,"
            " smoothing=%g",
            self.__class__.__name__,
            embedding_size,
            alpha,
            margin,
            smoothing,
        )

        self.entity_embedding = initialize_embedding(
            (n_entity, embedding_size), entity_initializer
        )
        self.relation_head_embedding = initialize_embedding(
            (n_relation_type, embedding_size), relation_initializer
        )
        self.relation_tail_embedding = initialize_embedding(
            (n_relation_type, embedding_size), relation_initializer
        )
        for table in [
            self.entity_embedding,
            self.relation_head_embedding,
            self.relation_tail_embedding,
        ]:
            table.copy_(floor_and_normalize(table, self.floor))

    def features(
        self, head: IdLike, relation: IdLike, tail: IdLike
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Head and tail features of triples.

        :return: shape: (*, embedding_size), (*, embedding_size)
        """
        return (
            self.entity_embedding[head] * self.relation_head_embedding[relation],
            self.entity_embedding[tail] * self.relation_tail_embedding[relation],
        )

    # docstr-coverage: inherited
    def score_triple(
        self,
        head: IdLike,
        relation: IdLike,
        tail: IdLike,
    ) -> torch.Tensor:
        self.check_ids(head, relation, tail)
        head_feature, tail_feature = self.features(head, relation, tail)
        head_feature = torch.clamp(head_feature, min=self.smoothing)
        tail_feature = torch.clamp(tail_feature, min=self.smoothing)
        return -(head_feature * torch.log(head_feature / tail_feature)).sum(dim=-1)

    @abstractmethod
    def train_derivative(self, triple: Triple, alpha: float) -> None:
        """
        Gradient step on a triple.

        :param triple:
            The triple to update.
        :param alpha:
            Signed learning rate.
        """
        raise NotImplementedError


class FactorE(FactorEKL):
    """
    Elementwise factor model with exponential-product score.
    """

    def __init__(
        self,
        n_entity: int,
        n_relation_type: int,
        embedding_size: int,
        alpha: float,
        margin: float,
        sigma: float,
        negative_sampler: Optional[BaseNegativeSampler] = None,
        entity_initializer: Initializer = init_uniform_norm,
        relation_initializer: Initializer = init_uniform_norm,
    ) -> None:
        """
        Initialize FactorE model.

        :param n_entity:
            see :meth:`FactorEKL.__init__`
        :param n_relation_type:
            see :meth:`FactorEKL.__init__`
        :param embedding_size:
            see :meth:`FactorEKL.__init__`
        :param alpha:
            see :meth:`FactorEKL.__init__`
        :param margin:
            Training threshold, in log-score space: pairs whose score
            ratio exceeds `exp(margin/sigma)` are skipped.
        :param sigma:
            Temperature of the exponential.
        :param negative_sampler:
            see :meth:`BaseScoreFunction.__init__`
        :param entity_initializer:
            see :meth:`FactorEKL.__init__`
        :param relation_initializer:
            see :meth:`FactorEKL.__init__`
        """
        super(FactorE, self).__init__(
            n_entity,
            n_relation_type,
            embedding_size,
            alpha,
            margin,
            smoothing=0.0,
            negative_sampler=negative_sampler,
            entity_initializer=entity_initializer,
            relation_initializer=relation_initializer,
        )
        if sigma <= 0:
            raise ValueError(f"`sigma` needs to be positive, got {sigma}")
        self.sigma = sigma
        logger.info("FactorE: sigma=%g", sigma)

    # docstr-coverage: inherited
    def score_triple(
        self,
        head: IdLike,
        relation: IdLike,
        tail: IdLike,
    ) -> torch.Tensor:
        self.check_ids(head, relation, tail)
        head_feature, tail_feature = self.features(head, relation, tail)
        return exponential_product_score(head_feature, tail_feature, self.sigma)

    # docstr-coverage: inherited
    def train_derivative(self, triple: Triple, alpha: float) -> None:
        factor_derivative_step(
            self.entity_embedding,
            self.relation_head_embedding,
            self.relation_tail_embedding,
            triple,
            alpha,
            self.sigma,
        )

    # docstr-coverage: inherited
    def train_triple(self, triple: Triple) -> bool:
        triple = self.as_triple(triple)
        negative = self.sample_negative(triple)
        if self.score_triple(*triple) / self.score_triple(*negative) > math.exp(
            self.margin / self.sigma
        ):
            return False

        self.train_derivative(triple, self.alpha)
        self.train_derivative(negative, -self.alpha)
        return True


class SingleFactorE(torch.nn.Module):
    """
    One factor of :class:`MultiFactorE`: an exponential-product factor
    model with its own embedding tables, trained externally.
    """

    def __init__(
        self,
        n_entity: int,
        n_relation_type: int,
        embedding_size: int,
        sigma: float,
        entity_initializer: Initializer = init_uniform_norm,
        relation_initializer: Initializer = init_constant_norm,
    ) -> None:
        """
        Initialize factor.

        :param n_entity:
            Number of entities in the knowledge graph.
        :param n_relation_type:
            Number of relation types in the knowledge graph.
        :param embedding_size:
            Size of entity and relation embeddings.
        :param sigma:
            Temperature of the exponential.
        :param entity_initializer:
            Initialization function or table for entity embeddings.
        :param relation_initializer:
            Initialization function or table for head-side and tail-side
            relation embeddings.
        """
        super().__init__()
        if embedding_size <= 0:
            raise ValueError(
                f"`embedding_size` needs to be positive, got {embedding_size}"
            )
        if sigma <= 0:
            raise ValueError(f"`sigma` needs to be positive, got {sigma}")
        self.embedding_size = embedding_size
        self.sigma = sigma
        floor = 1.0 / embedding_size**5
        self.entity_embedding = initialize_embedding(
            (n_entity, embedding_size), entity_initializer
        )
        self.relation_head_embedding = initialize_embedding(
            (n_relation_type, embedding_size), relation_initializer
        )
        self.relation_tail_embedding = initialize_embedding(
            (n_relation_type, embedding_size), relation_initializer
        )
        for table in [
            self.entity_embedding,
            self.relation_head_embedding,
            self.relation_tail_embedding,
        ]:
            table.copy_(floor_and_normalize(table, floor))

    def score_triple(
        self,
        head: IdLike,
        relation: IdLike,
        tail: IdLike,
    ) -> torch.Tensor:
        """
        see :meth:`BaseScoreFunction.score_triple`
        """
        return exponential_product_score(
            self.entity_embedding[head] * self.relation_head_embedding[relation],
            self.entity_embedding[tail] * self.relation_tail_embedding[relation],
            self.sigma,
        )

    def train_derivative(self, triple: Triple, alpha: float) -> None:
        """
        see :meth:`FactorEKL.train_derivative`
        """
        factor_derivative_step(
            self.entity_embedding,
            self.relation_head_embedding,
            self.relation_tail_embedding,
            triple,
            alpha,
            self.sigma,
        )


class MultiFactorE(BaseScoreFunction):
    """
    Product of experts of independent :class:`SingleFactorE` factors.

    The score of a triple is the product of the factors' scores.
    Factors are trained independently on the same pair of true and
    negative triples.
    """

    def __init__(
        self,
        n_entity: int,
        n_relation_type: int,
        embedding_size: int,
        alpha: float,
        margin: float,
        sigma: float,
        n_factor: int,
        negative_sampler: Optional[BaseNegativeSampler] = None,
    ) -> None:
        """
        Initialize MultiFactorE model.

        :param n_entity:
            see :meth:`BaseScoreFunction.__init__`
        :param n_relation_type:
            see :meth:`BaseScoreFunction.__init__`
        :param embedding_size:
            Size of entity and relation embeddings of each factor.
        :param alpha:
            Learning rate.
        :param margin:
            Per-factor training threshold: pairs whose score
            ratio exceeds `exp(n_factor*margin/sigma)` are skipped.
        :param sigma:
            Temperature shared by all factors.
        :param n_factor:
            Number of factors.
        :param negative_sampler:
            see :meth:`BaseScoreFunction.__init__`
        """
        super().__init__(n_entity, n_relation_type, negative_sampler)
        if embedding_size <= 0:
            raise ValueError(
                f"`embedding_size` needs to be positive, got {embedding_size}"
            )
        if alpha <= 0:
            raise ValueError(f"Learning rate `alpha` needs to be positive, got {alpha}")
        if sigma <= 0:
            raise ValueError(f"`sigma` needs to be positive, got {sigma}")
        if n_factor <= 0:
            raise ValueError(f"`n_factor` needs to be positive, got {n_factor}")
        self.embedding_size = embedding_size
        self.alpha = alpha
        self.margin = margin
        self.sigma = sigma
        self.n_factor = n_factor
        logger.info(
            "MultiFactorE: dimension=%d, learning rate=%g, training threshold=%g,"
            " sigma=%g, factor number=%d",
            embedding_size,
            alpha,
            margin,
            sigma,
            n_factor,
        )

        self.factors = torch.nn.ModuleList(
            [
                SingleFactorE(n_entity, n_relation_type, embedding_size, sigma)
                for _ in range(n_factor)
            ]
        )

    def factor_scores(
        self, head: IdLike, relation: IdLike, tail: IdLike
    ) -> torch.Tensor:
        """
        Scores of triples for each factor.

        :return: shape: (*, n_factor)
        """
        self.check_ids(head, relation, tail)
        return torch.stack(
            [factor.score_triple(head, relation, tail) for factor in self.factors],
            dim=-1,
        )

    # docstr-coverage: inherited
    def score_triple(
        self,
        head: IdLike,
        relation: IdLike,
        tail: IdLike,
    ) -> torch.Tensor:
        return torch.prod(self.factor_scores(head, relation, tail), dim=-1)

    # docstr-coverage: inherited
    def train_triple(self, triple: Triple) -> bool:
        triple = self.as_triple(triple)
        negative = self.sample_negative(triple)
        if self.score_triple(*triple) / self.score_triple(*negative) > math.exp(
            self.n_factor * self.margin / self.sigma
        ):
            return False

        for factor in self.factors:
            factor.train_derivative(triple, self.alpha)
            factor.train_derivative(negative, -self.alpha)
        return True
