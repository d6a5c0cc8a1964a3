"""Pipeline stages module.

Each stage is a module that exports a run() function returning StageResult.
"""

from __future__ import annotations

from sql2csv.pipeline.stages import extractor, transformer, writer
from sql2csv.pipeline.stages.base import StageResult

__all__ = [
    "StageResult",
    "extractor",
    "transformer",
    "writer",
]
