"""Single-owner wrapper for exclusive resources such as the serial port.

The bus is one physical half-duplex line, so exactly one object may own
the port at any time. Ownership can be handed over with ``move()``; the
old handle is emptied and any further use of it raises ``RuntimeError``.
Copying or pickling a handle raises ``TypeError``.
"""

from __future__ import annotations

from typing import Generic, TypeVar

T = TypeVar("T")


class OwnedHandle(Generic[T]):
    """Move-only owner of a resource with a ``close()`` method."""

    __slots__ = ("_resource",)

    def __init__(self, resource: T) -> None:
        self._resource: T | None = resource

    @property
    def valid(self) -> bool:
        return self._resource is not None

    @property
    def resource(self) -> T:
        if self._resource is None:
            raise RuntimeError("Handle no longer owns a resource")
        return self._resource

    def move(self) -> OwnedHandle[T]:
        """Transfer ownership to a new handle and empty this one."""
        return OwnedHandle(self.release())

    def release(self) -> T:
        """Give up ownership and return the bare resource."""
        resource = self.resource
        self._resource = None
        return resource

    def close(self) -> None:
        """Close the owned resource. Closing an empty handle is a no-op."""
        if self._resource is None:
            return
        self.release().close()

    def __copy__(self):
        raise TypeError("OwnedHandle cannot be copied; use move()")

    def __deepcopy__(self, memo):
        raise TypeError("OwnedHandle cannot be copied; use move()")

    def __reduce__(self):
        raise TypeError("OwnedHandle cannot be pickled")

    def __repr__(self) -> str:
        state = repr(self._resource) if self._resource is not None else "moved"
        return f"OwnedHandle({state})"
