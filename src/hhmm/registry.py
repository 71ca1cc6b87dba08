"""Registry of bridge-owned objects addressed by opaque handles.

Every `register` call allocates a new id from a counter that never repeats,
so a destroyed handle can never alias a later object. The registry does no
locking: one handle must not be used from several threads at once.
"""
import itertools
import logging
from typing import Any, Dict, Iterator, NamedTuple, Tuple, Type, Union

from hhmm.errors import InvalidHandle

logger = logging.getLogger(__name__)

__all__ = [
    'ModelHandle',
    'CorpusHandle',
    'HandleRegistry',
]


class ModelHandle(NamedTuple):
    id: int

class CorpusHandle(NamedTuple):
    id: int

Handle = Union[ModelHandle, CorpusHandle]


class HandleRegistry:
    """Arena of live objects indexed by handle id."""

    def __init__(self):
        self._entries: Dict[int, Tuple[Type, Any]] = {}
        self._ids = itertools.count(1)

    def register(self, kind: Type[Handle], obj: Any) -> Handle:
        """Store `obj` and return a fresh handle of type `kind`."""
        handle = kind(next(self._ids))
        self._entries[handle.id] = (kind, obj)
        logger.debug('Registered %s.', handle)
        return handle

    def resolve(self, handle: Handle, kind: Type[Handle]) -> Any:
        """Return the object behind `handle`.

        Raises InvalidHandle if the handle is not of type `kind`, was never
        issued, or was released.
        """
        if not isinstance(handle, kind):
            raise InvalidHandle(f'Expected a {kind.__name__}, received {handle!r}.')
        entry = self._entries.get(handle.id)
        if entry is None or entry[0] is not kind:
            raise InvalidHandle(f'{handle!r} is unknown or has been destroyed.')
        return entry[1]

    def release(self, handle: Handle, kind: Type[Handle]) -> Any:
        """Forget `handle` and return the object it referred to."""
        obj = self.resolve(handle, kind)
        del self._entries[handle.id]
        logger.debug('Released %s.', handle)
        return obj

    def handles(self) -> Iterator[Handle]:
        """Live handles, oldest first."""
        return iter([kind(id_) for id_, (kind, _) in self._entries.items()])

    def __contains__(self, handle) -> bool:
        return isinstance(handle, (ModelHandle, CorpusHandle)) \
               and self._entries.get(handle.id, (None,))[0] is type(handle)

    def __len__(self) -> int:
        return len(self._entries)
