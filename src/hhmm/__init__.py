"""Hierarchical HMM gesture classifier driven through opaque handles."""

from hhmm.bridge import Bridge
from hhmm.config import ModelConfig
from hhmm.errors import (
    BridgeError,
    InvalidArgument,
    InvalidHandle,
    ModelFitError,
    ModelIOError,
    FormatError,
)
from hhmm.hierarchical import ClassificationResult, HierarchicalHMM
from hhmm.registry import ModelHandle, CorpusHandle
