# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Central logging utilities.

Key Features
------------
1. configure_logging(): idempotent initialization of the root logger.
2. get_logger(name): helper that always returns a configured logger.
3. SecretRedactingFilter: masks credential-looking values (tokens, codes,
   passwords, secrets) in log records before they are emitted.

Raw tokens, one-time codes and secrets must never be passed to a logger in
the first place; the filter only catches slips in formatted messages.
"""

from __future__ import annotations

import logging
import re
from typing import Final

from beartype import beartype

__all__: Final = [
    "SecretRedactingFilter",
    "configure_logging",
    "get_logger",
]

_DEFAULT_LOG_FORMAT: Final = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_REDACTED: Final = "[REDACTED]"
_SENSITIVE_PATTERN: Final = re.compile(
    r"(?i)\b(password|passcode|code|token|secret|refresh_token|access_token)"
    r"(\s*[=:]\s*)([^\s,;'\"}]+)"
)
_is_configured: bool = False


class SecretRedactingFilter(logging.Filter):
    """Mask ``key=value`` pairs whose key names a credential."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SENSITIVE_PATTERN.sub(rf"\1\2{_REDACTED}", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


@beartype
def configure_logging(
    *, level: int = logging.INFO, fmt: str = _DEFAULT_LOG_FORMAT
) -> None:
    """Configure the root logger exactly once.

    Calling this function multiple times is safe – configuration will only
    be applied on the first invocation.
    """
    global _is_configured
    if _is_configured:
        return

    logging.basicConfig(level=level, format=fmt)
    redactor = SecretRedactingFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(redactor)
    _is_configured = True


@beartype
def get_logger(name: str | None = None, *, level: int | None = None) -> logging.Logger:
    """Return a module-scoped logger that is guaranteed to be configured."""
    configure_logging()
    logger = logging.getLogger(name or "adaptive_mfa")
    if level is not None:
        logger.setLevel(level)
    return logger
