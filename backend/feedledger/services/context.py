# Overview: Explicit caller context handed to every ledger operation.

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CallerContext:
    """
    Verified caller identity as supplied by the transport layer.

    The ledger performs no authorization; it only records who asked.
    """
    user_id: str
    role: str
