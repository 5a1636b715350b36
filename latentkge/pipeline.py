# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

"""
High-level API for training models one triple at a time.
"""

import logging
from typing import Any, Dict, Optional

import numpy as np
from numpy.typing import NDArray
from tqdm import tqdm

from latentkge.dataset import KGDataset
from latentkge.scoring import BaseScoreFunction

logger = logging.getLogger(__name__)


class TrainingPipeline:
    """
    Generic epoch loop: at each epoch, present every training triple
    to the model's :meth:`BaseScoreFunction.train_triple`, bracketed by
    the model's epoch boundary hooks.
    """

    def __init__(
        self,
        score_fn: BaseScoreFunction,
        triples: NDArray[np.int32],
        n_epoch: int,
        shuffle: bool = True,
        seed: Optional[int] = None,
        progress_bar: bool = True,
    ) -> None:
        """
        Initialize pipeline.

        :param score_fn:
            The model to train.
        :param triples: shape: (n_triple, 3)
            Training triples [head_id, relation_id, tail_id].
        :param n_epoch:
            Number of passes over the training triples.
        :param shuffle:
            Present triples in a new random order at each epoch.
            Default: True.
        :param seed:
            Seed of the RNG used for shuffling. Default: None.
        :param progress_bar:
            Display a progress bar over epochs. Default: True.
        """
        triples = np.asarray(triples)
        if triples.ndim != 2 or triples.shape[1] != 3:
            raise ValueError("`triples` needs to have shape (n_triple, 3)")
        if n_epoch <= 0:
            raise ValueError(f"`n_epoch` needs to be positive, got {n_epoch}")
        self.score_fn = score_fn
        self.triples = triples
        self.n_epoch = n_epoch
        self.shuffle = shuffle
        self.rng = np.random.default_rng(seed=seed)
        self.progress_bar = progress_bar

    @classmethod
    def from_dataset(
        cls,
        score_fn: BaseScoreFunction,
        dataset: KGDataset,
        n_epoch: int,
        part: str = "train",
        **kwargs: Any,
    ) -> "TrainingPipeline":
        """
        Pipeline training on one part of a dataset.

        :param score_fn:
            The model to train. Needs to have as many entities and
            relation types as the dataset.
        :param dataset:
            The knowledge graph dataset.
        :param n_epoch:
            see :meth:`TrainingPipeline.__init__`
        :param part:
            The part of the dataset to train on. Default: "train".
        :param kwargs:
            Further arguments of :meth:`TrainingPipeline.__init__`.

        :return:
            The training pipeline.
        """
        if (score_fn.n_entity, score_fn.n_relation_type) != (
            dataset.n_entity,
            dataset.n_relation_type,
        ):
            raise ValueError(
                f"{score_fn.__class__.__name__} built for"
                f" {score_fn.n_entity} entities and"
                f" {score_fn.n_relation_type} relation types, dataset has"
                f" {dataset.n_entity} and {dataset.n_relation_type}"
            )
        return cls(score_fn, dataset.triples[part], n_epoch, **kwargs)

    def train_epoch(self, last_epoch: bool = False) -> int:
        """
        Run a single epoch.

        :param last_epoch:
            Whether this is the final epoch.

        :return:
            Number of training steps that updated the model.
        """
        if self.shuffle:
            triples = self.triples[self.rng.permutation(len(self.triples))]
        else:
            triples = self.triples
        return self.score_fn.train_epoch(triples, last_epoch=last_epoch)

    def __call__(self) -> Dict[str, Any]:
        """
        Train for all epochs.

        :return:
            "n_update": number of updating training steps, for each epoch.
        """
        n_update = []
        epochs = range(self.n_epoch)
        for epoch in tqdm(epochs, disable=not self.progress_bar):
            n_update.append(self.train_epoch(last_epoch=epoch == self.n_epoch - 1))
            logger.debug("Epoch %d: %d updates", epoch, n_update[-1])
        logger.info(
            "Trained %s for %d epochs, %d updates in last epoch",
            self.score_fn.__class__.__name__,
            self.n_epoch,
            n_update[-1],
        )

        return dict(n_update=np.array(n_update))
