# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

from math import sqrt
from typing import Callable, Optional, Tuple, Union

import torch

"""
Utilities for entity/relation embeddings.
"""

#: All embedding tables are stored in double precision
EMBEDDING_DTYPE = torch.float64


def init_uniform_norm(embedding_table: torch.Tensor) -> torch.Tensor:
    """
    Initialize embeddings according to uniform distribution
    and normalize so that each row has norm 1.

    :param embedding_table:
        Tensor of embedding parameters to initialize.

    :return:
        Initialized tensor.
    """
    return torch.nn.functional.normalize(
        torch.nn.init.uniform_(embedding_table), dim=-1
    )


def init_constant_norm(embedding_table: torch.Tensor) -> torch.Tensor:
    """
    Initialize all entries of each row to the same positive value,
    so that each row has norm 1.

    :param embedding_table:
        Tensor of embedding parameters to initialize.

    :return:
        Initialized tensor.
    """
    return torch.nn.functional.normalize(torch.nn.init.ones_(embedding_table), dim=-1)


def init_KGE_uniform(
    embedding_table: torch.Tensor, b: Optional[float] = None
) -> torch.Tensor:
    """
    Initialize embeddings according to symmetric uniform distribution.

    :param embedding_table:
        Tensor of embedding parameters to initialize.
    :param b:
        Positive boundary of distribution support.
        Default: `sqrt(6/row_size)`.

    :return:
        Initialized tensor.
    """
    if b is None:
        b = sqrt(6.0 / embedding_table.shape[-1])
    return torch.nn.init.uniform_(embedding_table, -b, b)


def init_positive_uniform(
    embedding_table: torch.Tensor, b: Optional[float] = None
) -> torch.Tensor:
    """
    Initialize embeddings according to uniform distribution on `[0, b)`.

    :param embedding_table:
        Tensor of embedding parameters to initialize.
    :param b:
        Upper boundary of distribution support.
        Default: `sqrt(6/row_size)`.

    :return:
        Initialized tensor.
    """
    if b is None:
        b = sqrt(6.0 / embedding_table.shape[-1])
    return torch.nn.init.uniform_(embedding_table, 0.0, b)


def initialize_embedding(
    shape: Tuple[int, ...],
    initializer: Union[torch.Tensor, Callable[..., torch.Tensor]],
) -> torch.nn.Parameter:
    """
    Initialize an embedding table.

    Tables are updated by the models' own training rules, not by autograd,
    hence the returned parameter does not require gradients.

    :param shape:
        Shape of the table, e.g. (n_entity, embedding_size), or
        (n_relation_type, n_entity, n_topic) for tables keyed by
        relation-entity pairs.
    :param initializer:
        Embedding table or initializing function. If providing
        an embedding table, this needs to have shape :code:`shape`.

    :return: shape: :code:`shape`
        Embedding table.
    """
    if any(s <= 0 for s in shape):
        raise ValueError(f"Embedding table needs positive sizes, got {shape}")

    if isinstance(initializer, torch.Tensor):
        if initializer.shape != torch.Size(shape):
            raise ValueError(
                f"Shape of table provided for initialization {tuple(initializer.shape)}"
                f" different from expected shape {shape}"
            )
        embedding = initializer.detach().clone().to(EMBEDDING_DTYPE)
    else:
        embedding = initializer(torch.empty(size=shape, dtype=EMBEDDING_DTYPE))

    return torch.nn.Parameter(embedding, requires_grad=False)
