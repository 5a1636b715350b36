# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

"""
General purpose utilities.
"""

from typing import Union

import numpy as np
import torch

IdLike = Union[int, np.integer, torch.Tensor]


def check_ids(ids: IdLike, n_ids: int, kind: str) -> None:
    """
    Check that entity/relation IDs are in range.

    :param ids:
        A single ID or an integer tensor of IDs.
    :param n_ids:
        Number of valid IDs; valid IDs are in `[0, n_ids)`.
    :param kind:
        "entity" or "relation", used in the error message.

    :raises IndexError:
        If any ID is outside of the valid range. Negative IDs are
        rejected, rather than wrapping around.
    """
    if isinstance(ids, torch.Tensor):
        if ids.numel() == 0:
            return
        lo, hi = int(ids.min()), int(ids.max())
    else:
        lo = hi = int(ids)
    if lo < 0 or hi >= n_ids:
        raise IndexError(
            f"{kind} ID out of range: got {lo if lo < 0 else hi},"
            f" expected IDs in [0, {n_ids})"
        )


def floor_and_normalize(v: torch.Tensor, floor: float) -> torch.Tensor:
    """
    Elementwise floor followed by L2 normalization along the last dimension.

    :param v: shape: (*, embedding_size)
        Tensor to project.
    :param floor:
        Minimum value of each entry before normalization.

    :return: shape: (*, embedding_size)
        Strictly positive tensor with unit L2-norm rows.
    """
    return torch.nn.functional.normalize(torch.clamp(v, min=floor), p=2, dim=-1)


def clip_to_unit_ball(v: torch.Tensor) -> torch.Tensor:
    """
    Rescale rows with L2-norm larger than 1 to unit norm.
    Rows already inside the unit ball are left untouched.

    :param v: shape: (*, embedding_size)
        Tensor to project.

    :return: shape: (*, embedding_size)
        Projection on the closed unit ball.
    """
    norm = torch.linalg.vector_norm(v, ord=2, dim=-1, keepdim=True)
    return torch.where(norm > 1.0, v / norm, v)
