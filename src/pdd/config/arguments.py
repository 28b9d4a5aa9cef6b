"""dd-style ``key=value`` token grammar.

Example::

    pdd copy -- if=boot.img of=/dev/sda1 of=/dev/sdb1 \\
        -- if=root.img of=/dev/sda2 os=backup:9000 bs=4096 \\
        -- if=stdout.log os=:9001 ohttp="PUT;http://collector/ingest" redir=1

Operations are separated by a ``--`` token.
"""

from __future__ import annotations

from collections.abc import Iterable

from pdd.config.builder import OperationBuilder, OperationError
from pdd.config.models import OperationConfig

SEPARATOR = "--"


class ArgumentError(ValueError):
    """Raised for a token that does not fit the grammar."""


def _parse_int(key: str, value: str, token: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        msg = f"Invalid value for {key}, expected an integer, got {token}"
        raise ArgumentError(msg) from exc


def _apply(op: OperationBuilder, token: str) -> None:
    lhs, sep, rhs = token.partition("=")
    if not sep:
        msg = f"Invalid command line argument, expected key=value pair, got {token}"
        raise ArgumentError(msg)
    key, value = lhs.strip().lower(), rhs.strip()

    if key == "if":
        op.input_file(value)
    elif key == "of":
        op.output_file(value)
    elif key == "os":
        host, colon, port_str = value.rpartition(":")
        if not colon:
            msg = (
                "Invalid command line argument, expected os=hostname:port, "
                f"got {token}"
            )
            raise ArgumentError(msg)
        op.output_socket(host or "localhost", _parse_int("os port", port_str, token))
    elif key == "ohttp":
        method, semi, url = value.partition(";")
        if not semi or not method or not url:
            msg = (
                "Invalid command line argument, "
                f"expected ohttp=[METHOD];[URL], got {token}"
            )
            raise ArgumentError(msg)
        op.output_http(method, url)
    elif key == "bs":
        op.block_size(_parse_int("bs", value, token))
    elif key in ("count", "c"):
        op.count(_parse_int(key, value, token))
    elif key == "redir":
        op.toggle_redirected()
    else:
        msg = f"Invalid command line argument, unexpected input {token}"
        raise ArgumentError(msg)


def parse_operations(tokens: Iterable[str]) -> list[OperationConfig]:
    """Parse tokens into validated operations, in declaration order.

    Raises :class:`ArgumentError` for malformed tokens and
    :class:`~pdd.config.builder.OperationError` for incomplete operations.
    """
    operations: list[OperationConfig] = []
    op = OperationBuilder()
    for token in tokens:
        if token.strip() == SEPARATOR:
            if not op.is_empty:
                operations.append(op.build())
            op = OperationBuilder()
            continue
        _apply(op, token)

    if not op.is_empty:
        operations.append(op.build())
    if not operations:
        msg = "No operations given, expected at least if=... of=..."
        raise OperationError(msg)
    return operations


def check_inputs_exist(operations: Iterable[OperationConfig]) -> None:
    """Fail early if any operation's input path does not exist."""
    missing = [str(op.input_path) for op in operations if not op.input_path.exists()]
    if missing:
        msg = f"Input file(s) do not exist: {', '.join(missing)}"
        raise ArgumentError(msg)
