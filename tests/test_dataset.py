# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from latentkge.dataset import KGDataset, Triple, iter_triples

seed = 1234
n_entity = 30
n_relation_type = 4
n_triple = 100

np.random.seed(seed)

triples = np.stack(
    [
        np.random.randint(n_entity, size=n_triple),
        np.random.randint(n_relation_type, size=n_triple),
        np.random.randint(n_entity, size=n_triple),
    ],
    axis=1,
)
# Make sure the largest IDs appear
triples[0] = [n_entity - 1, n_relation_type - 1, 0]


def test_iter_triples() -> None:
    unpacked = list(iter_triples(triples))
    assert len(unpacked) == n_triple
    assert unpacked[0] == Triple(n_entity - 1, n_relation_type - 1, 0)
    assert all(type(t.head) is int for t in unpacked)


def test_from_triples() -> None:
    ds = KGDataset.from_triples(triples, split=(0.8, 0.1, 0.1), seed=seed)

    assert ds.n_entity == n_entity
    assert ds.n_relation_type == n_relation_type
    assert {k: len(v) for k, v in ds.triples.items()} == dict(
        train=80, valid=10, test=10
    )
    assert ds.original_triple_ids is not None
    all_ids = np.concatenate([ds.original_triple_ids[k] for k in ds.triples.keys()])
    assert sorted(all_ids.tolist()) == list(range(n_triple))
    for part, ids in ds.original_triple_ids.items():
        np.testing.assert_equal(ds.triples[part], triples[ids])
        assert ds.triples[part].dtype == np.int32

    with pytest.raises(ValueError):
        KGDataset.from_triples(triples[:, :2])


def test_from_dataframe() -> None:
    df = pd.DataFrame(
        dict(
            subject=["paris", "rome", "france", "paris"],
            predicate=["capital_of", "capital_of", "part_of", "part_of"],
            object=["france", "italy", "europe", "europe"],
        )
    )
    ds = KGDataset.from_dataframe(
        {"train": df.iloc[:3], "test": df.iloc[3:]},
        head_column="subject",
        relation_column="predicate",
        tail_column="object",
    )

    assert ds.entity_dict == ["paris", "rome", "france", "italy", "europe"]
    assert ds.relation_dict == ["capital_of", "part_of"]
    assert ds.n_entity == 5 and ds.n_relation_type == 2
    np.testing.assert_equal(ds.triples["train"], [[0, 0, 2], [1, 0, 3], [2, 1, 4]])
    np.testing.assert_equal(ds.triples["test"], [[0, 1, 4]])

    ds_split = KGDataset.from_dataframe(
        df, "subject", "predicate", "object", split=(0.5, 0.25, 0.25)
    )
    assert sum(len(v) for v in ds_split.triples.values()) == len(df)
    assert ds_split.n_entity == 5


def test_save_load(tmp_path: Path) -> None:
    ds = KGDataset.from_triples(triples, seed=seed)
    ds.save(tmp_path / "dataset.pkl")
    loaded = KGDataset.load(tmp_path / "dataset.pkl")

    assert loaded.n_entity == ds.n_entity
    assert loaded.n_relation_type == ds.n_relation_type
    for part in ds.triples.keys():
        np.testing.assert_equal(loaded.triples[part], ds.triples[part])

    with open(tmp_path / "other.pkl", "wb") as f:
        f.write(b"\x80\x04K\x01.")
    with pytest.raises(ValueError):
        KGDataset.load(tmp_path / "other.pkl")


def test_all_triples() -> None:
    ds = KGDataset.from_triples(triples, split=(0.5, 0.3, 0.2), seed=seed)
    all_triples = ds.all_triples()
    assert all_triples.shape == (n_triple, 3)
    assert sorted(map(tuple, all_triples.tolist())) == sorted(
        map(tuple, triples.tolist())
    )
