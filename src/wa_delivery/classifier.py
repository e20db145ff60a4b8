# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Classification of provider errors into retry decisions.

Every failed provider call is mapped to exactly one :class:`ErrorKind`.
Only throttling is retried; unknown codes are treated as permanent, never
as transient.

Code table:

==========================  ===============================================
Kind                        Provider codes
==========================  ===============================================
RETRYABLE_THROTTLED         130429 throughput, 131056 pair rate limit,
                            80007 business account rate limit
FATAL_TEMPLATE_INVALID      131026 template not approved / not found,
                            132001 template does not exist
FATAL_RECIPIENT_UNAVAILABLE 131021 recipient not available
FATAL_OTHER                 anything else
==========================  ===============================================
"""

from __future__ import annotations

from enum import Enum

from .gateway import GatewayError


class ErrorKind(str, Enum):
    """Outcome classes of a failed provider call."""

    RETRYABLE_THROTTLED = "retryable_throttled"
    FATAL_TEMPLATE_INVALID = "fatal_template_invalid"
    FATAL_RECIPIENT_UNAVAILABLE = "fatal_recipient_unavailable"
    FATAL_OTHER = "fatal_other"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.RETRYABLE_THROTTLED


THROTTLING_CODES = frozenset({130429, 131056, 80007})
TEMPLATE_INVALID_CODES = frozenset({131026, 132001})
RECIPIENT_UNAVAILABLE_CODES = frozenset({131021})

ERROR_CODE_KINDS: dict[int, ErrorKind] = {
    **{code: ErrorKind.RETRYABLE_THROTTLED for code in THROTTLING_CODES},
    **{code: ErrorKind.FATAL_TEMPLATE_INVALID for code in TEMPLATE_INVALID_CODES},
    **{code: ErrorKind.FATAL_RECIPIENT_UNAVAILABLE for code in RECIPIENT_UNAVAILABLE_CODES},
}


def normalise_code(code: int | str | None) -> int | None:
    """Return ``code`` as int, or None if it is not a provider numeric code."""
    if isinstance(code, bool) or code is None:
        return None
    if isinstance(code, int):
        return code
    try:
        return int(str(code).strip())
    except ValueError:
        return None


def classify_code(code: int | str | None) -> ErrorKind:
    numeric = normalise_code(code)
    if numeric is None:
        return ErrorKind.FATAL_OTHER
    return ERROR_CODE_KINDS.get(numeric, ErrorKind.FATAL_OTHER)


def classify(error: GatewayError) -> ErrorKind:
    """Map a gateway failure to its :class:`ErrorKind`."""
    return classify_code(error.code)


__all__ = [
    "ERROR_CODE_KINDS",
    "ErrorKind",
    "RECIPIENT_UNAVAILABLE_CODES",
    "TEMPLATE_INVALID_CODES",
    "THROTTLING_CODES",
    "classify",
    "classify_code",
    "normalise_code",
]
