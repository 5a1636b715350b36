# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

"""
latentkge is a Python package for knowledge graph embedding with
latent topic, translational and elementwise-factor models,
trained one triple at a time against sampled negative triples.
"""

from . import (  # NOQA:F401
    dataset,
    embedding,
    negative_sampler,
    pipeline,
    scoring,
    utils,
)
