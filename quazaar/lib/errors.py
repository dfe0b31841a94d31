# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""Exception types shared across the daemon."""


class QuazaarError(Exception):
    """Base class for every error the daemon raises on purpose."""


class ConfigError(QuazaarError):
    """A configuration value the server cannot start with."""


class SourceUnavailable(QuazaarError):
    """A snapshot source could not produce a snapshot this tick.

    Not fatal: the poller logs it and the next tick is the retry.
    """


class CommandParseError(QuazaarError):
    """An inbound frame is not a valid command object."""


class ExecutionError(QuazaarError):
    """An allowlisted command failed to start or exited unsuccessfully."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode
