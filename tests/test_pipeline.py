# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

import numpy as np
import pytest
import torch
from torch.testing import assert_close

from latentkge.dataset import KGDataset
from latentkge.negative_sampler import (
    BernoulliNegativeSampler,
    FixedNegativeSampler,
    RandomNegativeSampler,
)
from latentkge.pipeline import TrainingPipeline
from latentkge.scoring import LatentTopicModel, TranslationalModel

seed = 1234
n_entity = 15
n_relation_type = 2
n_topic = 4
n_triple = 40
n_epoch = 5

np.random.seed(seed)
torch.manual_seed(seed)

triples = np.stack(
    [
        np.random.randint(n_entity, size=n_triple),
        np.random.randint(n_relation_type, size=n_triple),
        np.random.randint(n_entity, size=n_triple),
    ],
    axis=1,
).astype(np.int32)


def test_topic_model_pipeline() -> None:
    model = LatentTopicModel(n_entity, n_relation_type, n_topic)
    pipeline = TrainingPipeline(
        model, triples, n_epoch=n_epoch, seed=seed, progress_bar=False
    )
    out = pipeline()

    np.testing.assert_equal(out["n_update"], np.full(n_epoch, n_triple))
    assert not model.in_epoch
    assert_close(
        model.topic_embedding.sum(), torch.tensor(1.0, dtype=torch.float64)
    )


@pytest.mark.parametrize("shuffle", [True, False])
def test_pipeline_reproducible(shuffle: bool) -> None:
    states = []
    for _ in range(2):
        torch.manual_seed(seed)
        model = TranslationalModel(
            n_entity,
            n_relation_type,
            embedding_size=4,
            alpha=0.01,
            margin=1.0,
            negative_sampler=RandomNegativeSampler(n_entity, "ht", seed=seed),
        )
        TrainingPipeline(
            model,
            triples,
            n_epoch=n_epoch,
            shuffle=shuffle,
            seed=seed,
            progress_bar=False,
        )()
        states.append(model.state_dict())

    for k in states[0].keys():
        assert torch.equal(states[0][k], states[1][k])


def test_translational_toy_graph() -> None:
    # Entity embeddings only vary along the first coordinate, where both
    # relation embeddings are 1: scores reduce to -|x_head - x_tail|
    entity_table = torch.tensor([[-0.3, 0.0], [-0.1, 0.0], [0.4, 0.0]])
    relation_table = torch.tensor([[1.0, 0.0]])
    true_triples = np.array([[0, 0, 1], [1, 0, 0]], dtype=np.int32)
    negatives = np.array([[0, 0, 2], [1, 0, 2]], dtype=np.int32)
    margin = 1.0

    model = TranslationalModel(
        n_entity=3,
        n_relation_type=1,
        embedding_size=2,
        alpha=0.01,
        margin=margin,
        negative_sampler=FixedNegativeSampler(negatives),
        entity_initializer=entity_table,
        relation_in_initializer=relation_table,
        relation_out_initializer=relation_table,
    )
    initial_gap = model(true_triples) - model(negatives)
    assert (initial_gap < margin).all()

    out = TrainingPipeline(
        model, true_triples, n_epoch=100, shuffle=False, progress_bar=False
    )()

    final_gap = model(true_triples) - model(negatives)
    assert (final_gap > margin).all()
    assert out["n_update"][0] == len(true_triples)
    assert out["n_update"][-1] == 0
    entity_norm = torch.linalg.vector_norm(model.entity_embedding, dim=-1)
    assert (entity_norm <= 1.0 + 1e-12).all()


def test_pipeline_invalid() -> None:
    model = LatentTopicModel(n_entity, n_relation_type, n_topic)
    with pytest.raises(ValueError):
        TrainingPipeline(model, triples, n_epoch=0)
    with pytest.raises(ValueError):
        TrainingPipeline(model, triples[:, :2], n_epoch=n_epoch)


def test_pipeline_from_dataset() -> None:
    ds = KGDataset(
        n_entity=n_entity,
        n_relation_type=n_relation_type,
        triples={"train": triples[:30], "test": triples[30:]},
    )
    torch.manual_seed(seed)
    model = TranslationalModel(
        n_entity,
        n_relation_type,
        embedding_size=4,
        alpha=0.01,
        margin=1.0,
        negative_sampler=BernoulliNegativeSampler.from_dataset(ds, seed=seed),
    )
    pipeline = TrainingPipeline.from_dataset(
        model, ds, n_epoch=n_epoch, shuffle=False, progress_bar=False
    )
    np.testing.assert_equal(pipeline.triples, ds.triples["train"])
    assert not pipeline.shuffle

    out = pipeline()
    assert out["n_update"].shape == (n_epoch,)
    assert (out["n_update"] <= 30).all()

    other_model = LatentTopicModel(n_entity + 1, n_relation_type, n_topic)
    with pytest.raises(ValueError):
        TrainingPipeline.from_dataset(other_model, ds, n_epoch=n_epoch)
