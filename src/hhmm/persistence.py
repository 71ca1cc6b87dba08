"""Reading and writing model documents.

A document is a JSON object written in full on every save. Labels are read
back in the iteration order of its "models" object, which `json` preserves
from the file.
"""
import json
import logging
import os
from pathlib import Path
from typing import List, Union

from hhmm.errors import FormatError, ModelIOError
from hhmm.hierarchical import HierarchicalHMM

logger = logging.getLogger(__name__)

__all__ = [
    'save_document',
    'load_document',
    'save_model',
    'restore_model',
]


def save_document(document: dict, path: Union[str, Path]):
    """Write `document` as JSON to `path`, replacing any existing file.

    The document is written to a sibling temporary file first and moved into
    place, so a failed write never leaves a truncated document behind.
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + '.tmp')
    try:
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(document, f)
        os.replace(tmp_path, path)
    except OSError as err:
        if tmp_path.exists():
            tmp_path.unlink()
        raise ModelIOError(f'Could not write model document to {path}: {err}') from err
    logger.info('Saved model document to %s.', path)

def load_document(path: Union[str, Path]) -> dict:
    """Read the JSON document at `path`."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except OSError as err:
        raise ModelIOError(f'Could not read model document {path}: {err}') from err
    except ValueError as err:
        # json.JSONDecodeError and UnicodeDecodeError
        raise FormatError(f'{path} is not a JSON document: {err}') from err
    return document

# -----------------------------------------------------------------------------

def save_model(model: HierarchicalHMM, path: Union[str, Path]):
    """Serialize the full trained state of `model` to `path`."""
    save_document(model.to_document(), path)

def restore_model(model: HierarchicalHMM, path: Union[str, Path]) -> List[str]:
    """Replace the state of `model` with the document at `path`.

    Returns the restored labels, complete and in document order. On any
    error the model is left untouched.
    """
    labels = model.from_document(load_document(path))
    logger.info('Restored labels %s from %s.', labels, path)
    return list(labels)
