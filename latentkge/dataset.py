# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

"""
Triples and knowledge graph datasets.
"""

import dataclasses
import pickle
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray


class Triple(NamedTuple):
    """
    A fact "head --relation--> tail", as a tuple of IDs.
    """

    #: Head entity ID
    head: int
    #: Relation type ID
    relation: int
    #: Tail entity ID
    tail: int


def iter_triples(triples: NDArray[np.int32]) -> Iterator[Triple]:
    """
    Iterate over the rows of an array of triples.

    :param triples: shape: (n_triple, 3)
        Array of [head_id, relation_id, tail_id].

    :return:
        Iterator of :class:`Triple`.
    """
    for h, r, t in np.asarray(triples).tolist():
        yield Triple(h, r, t)


@dataclasses.dataclass
class KGDataset:
    """
    Triples of a knowledge graph, split in named parts
    (e.g. "train", "valid", "test").
    """

    #: Number of entities; valid entity IDs are in [0, n_entity)
    n_entity: int

    #: Number of relation types; valid relation IDs are in [0, n_relation_type)
    n_relation_type: int

    #: {part: int32[n_triple, {h,r,t}]}
    triples: Dict[str, NDArray[np.int32]]

    #: Entity labels by ID; str[n_entity]
    entity_dict: Optional[List[str]] = None

    #: Relation type labels by ID; str[n_relation_type]
    relation_dict: Optional[List[str]] = None

    #: Row of each triple in the array it was split from;
    #: {part: int64[n_triple]}
    original_triple_ids: Optional[Dict[str, NDArray[np.int64]]] = None

    def all_triples(self) -> NDArray[np.int32]:
        """
        Triples of all parts, e.g. to filter known facts out of
        negative samples.

        :return: shape: (n_triple, 3)
            Concatenation of the triples of every part.
        """
        return np.concatenate(list(self.triples.values()), axis=0)

    @classmethod
    def from_triples(
        cls,
        data: NDArray[np.int32],
        split: Tuple[float, float, float] = (0.7, 0.15, 0.15),
        seed: int = 1234,
        entity_dict: Optional[List[str]] = None,
        relation_dict: Optional[List[str]] = None,
    ) -> "KGDataset":
        """
        Randomly split an array of ID triples in "train", "valid"
        and "test" parts.

        :param data: shape: (n_triple, 3)
            Triples [head_id, relation_id, tail_id].
        :param split:
            Fractions of triples in the train and validation parts;
            the remaining triples make the test part.
        :param seed:
            Seed of the RNG used for splitting.
        :param entity_dict:
            Entity labels by ID. If given, sets :attr:`n_entity`,
            otherwise it is inferred from the largest entity ID.
        :param relation_dict:
            Relation type labels by ID, used like :code:`entity_dict`.

        :return:
            The split dataset.
        """
        data = np.asarray(data)
        if data.ndim != 2 or data.shape[1] != 3:
            raise ValueError("`data` needs to have shape (n_triple, 3)")
        n_train = int(len(data) * split[0])
        n_valid = int(len(data) * split[1])

        order = np.random.default_rng(seed=seed).permutation(len(data))
        parts = np.split(order, [n_train, n_train + n_valid])
        triple_ids = dict(zip(["train", "valid", "test"], parts))

        if entity_dict:
            n_entity = len(entity_dict)
        else:
            n_entity = int(data[:, [0, 2]].max()) + 1
        if relation_dict:
            n_relation_type = len(relation_dict)
        else:
            n_relation_type = int(data[:, 1].max()) + 1

        return cls(
            n_entity=n_entity,
            n_relation_type=n_relation_type,
            triples={k: data[v].astype(np.int32) for k, v in triple_ids.items()},
            entity_dict=entity_dict,
            relation_dict=relation_dict,
            original_triple_ids=triple_ids,
        )

    @classmethod
    def from_dataframe(
        cls,
        df: Union[pd.DataFrame, Dict[str, pd.DataFrame]],
        head_column: Union[int, str],
        relation_column: Union[int, str],
        tail_column: Union[int, str],
        split: Tuple[float, float, float] = (0.7, 0.15, 0.15),
        seed: int = 1234,
    ) -> "KGDataset":
        """
        Build a dataset from labeled triples. Entities and relation types
        get IDs in order of first appearance (heads of a part before its
        tails, parts in order).

        :param df:
            All triples, to be split randomly, or a dictionary
            {part: triples} with a predefined split.
        :param head_column:
            Column of head entity labels.
        :param relation_column:
            Column of relation type labels.
        :param tail_column:
            Column of tail entity labels.
        :param split:
            see :meth:`KGDataset.from_triples`, only used if
            :code:`df` is a single DataFrame.
        :param seed:
            see :meth:`KGDataset.from_triples`, only used if
            :code:`df` is a single DataFrame.

        :return:
            The dataset, with label dictionaries.
        """
        parts = {"all": df} if isinstance(df, pd.DataFrame) else df
        entity_ids, entity_labels = pd.factorize(
            pd.concat(
                [pd.concat([p[head_column], p[tail_column]]) for p in parts.values()],
                ignore_index=True,
            )
        )
        relation_ids, relation_labels = pd.factorize(
            pd.concat([p[relation_column] for p in parts.values()], ignore_index=True)
        )

        triples = {}
        offset = 0
        for part, p in parts.items():
            n = len(p)
            heads = entity_ids[2 * offset : 2 * offset + n]
            tails = entity_ids[2 * offset + n : 2 * offset + 2 * n]
            rels = relation_ids[offset : offset + n]
            triples[part] = np.stack([heads, rels, tails], axis=1).astype(np.int32)
            offset += n

        entity_dict = entity_labels.tolist()
        relation_dict = relation_labels.tolist()
        if isinstance(df, pd.DataFrame):
            return cls.from_triples(
                triples["all"], split, seed, entity_dict, relation_dict
            )
        return cls(
            n_entity=len(entity_dict),
            n_relation_type=len(relation_dict),
            triples=triples,
            entity_dict=entity_dict,
            relation_dict=relation_dict,
        )

    def save(self, out_file: Path) -> None:
        """
        Pickle the dataset.

        :param out_file:
            Path to output .pkl file.
        """
        with open(out_file, "wb") as f:
            pickle.dump(self, f)
        print(f"KGDataset saved to {out_file}")

    @classmethod
    def load(cls, path: Path) -> "KGDataset":
        """
        Load a dataset written by :meth:`KGDataset.save`.

        :param path:
            Path to the .pkl file.

        :return:
            The dataset.
        """
        with open(path, "rb") as f:
            kg_dataset = pickle.load(f)
        if not isinstance(kg_dataset, KGDataset):
            raise ValueError(f"File at path {path} is not a KGDataset")
        print(f"Loaded KGDataset at {path}")
        return kg_dataset
