"""Boot-script composition.

Core types and composition functions for the declarative boot-script DSL.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Final

# =============================================================================
# Core Types
# =============================================================================

type Op = str | Callable[[], str] | list[Op]
"""Operation type: either a literal string or a function returning a string."""


def resolve(op: Op | None) -> str:
    """Resolve an operation to its string representation."""
    match op:
        case str(op):
            return op
        case list(op):
            return "\n".join(resolve(o) for o in op)
        case None:
            return ""
        case _:
            return op()


HEADER: Final = """#!/bin/bash
set -e
"""


def bootstrap(*ops: Op | None, header: str | None = None) -> str:
    """Compose operations into a complete EC2 user-data script.

    Args:
        *ops: Operations to compose. Can be strings or callables returning strings.
        header: Optional custom header. Defaults to a bash shebang with ``set -e``.

    Example:
        >>> script = bootstrap(
        ...     mkdir("/var/log/cirrus"),
        ...     "echo 'custom command'",
        ... )
    """
    base = HEADER if header is None else header
    commands = [resolved for op in ops if (resolved := resolve(op))]
    return base + "\n".join(commands) + "\n"
