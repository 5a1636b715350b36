# Copyright (c) 2023 Graphcore Ltd. All rights reserved.

from pathlib import Path

import setuptools

setuptools.setup(
    name="latentkge",
    version="0.1",
    packages=["latentkge"],
    install_requires=Path("requirements.txt").read_text().rstrip("\n").split("\n"),
    extras_require={"test": ["pytest"]},
    python_requires=">=3.8",
)
