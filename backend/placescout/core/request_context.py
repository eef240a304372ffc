from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
import logging
from typing import Iterator, Optional

from .ulid_helper import generate_ulid

_operation_id_var: ContextVar[str] = ContextVar("operation_id", default="")


def set_operation_id(operation_id: Optional[str]) -> Token[str]:
    return _operation_id_var.set(operation_id or "")


def reset_operation_id(token: Token[str]) -> None:
    _operation_id_var.reset(token)


def get_operation_id_value(default: str = "no-operation") -> str:
    value = _operation_id_var.get()
    return value if value else default


@contextmanager
def operation_scope(operation_id: Optional[str] = None, *, inherit: bool = True) -> Iterator[str]:
    """Bind an operation id for the enclosed block.

    With ``inherit`` an already-bound id is kept, so nested pipeline steps
    log under the request that started them.
    """
    current = _operation_id_var.get()
    if inherit and current and operation_id is None:
        yield current
        return
    new_id = operation_id or generate_ulid()
    token = _operation_id_var.set(new_id)
    try:
        yield new_id
    finally:
        _operation_id_var.reset(token)


class OperationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "operation_id"):
            record.operation_id = get_operation_id_value()
        return True


def attach_operation_id_filter(logger: Optional[logging.Logger] = None) -> None:
    target = logger or logging.getLogger()
    for handler in target.handlers:
        handler.addFilter(OperationIdFilter())
