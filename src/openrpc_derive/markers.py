"""Runtime counterparts of the derivation annotations.

The annotations are consumed by `openrpc-derive` at build time. At runtime they
are inert, so annotated source can be imported before (and without) derivation.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, TypeVar, overload, runtime_checkable

_T = TypeVar("_T")


@runtime_checkable
class RpcMetadata(Protocol):
    """Capability required from the `Metadata` type of an interface.

    Derivation adds this as a base of the `Metadata` nested class, which marks it
    as usable for metadata-aware dispatch.
    """


def document_rpc(target: _T) -> _T:
    """Mark an interface or an implementation for schema derivation."""
    return target


@overload
def rpc(func: _T, /) -> _T: ...


@overload
def rpc(
    *,
    name: str | None = None,
    meta: bool = False,
    returns: str | None = None,
    deprecated: bool = False,
) -> Callable[[_T], _T]: ...


def rpc(func: Any = None, /, **options: Any) -> Any:
    """Mark a procedure of an interface for inclusion in the schema.

    Args:
        func (Any, optional): The procedure, when used without arguments.
        **options: `name`, `meta`, `returns` and `deprecated`. Only read at build time.

    Returns:
        Any: The procedure, or a decorator returning it unchanged.
    """
    if func is not None:
        return func

    def decorator(inner: _T) -> _T:
        return inner

    return decorator
