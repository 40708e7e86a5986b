"""Exceptions raised by netavark."""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterable, Iterator
from typing import TextIO


class NetavarkError(Exception):
    """Base error for all netavark failures, optionally wrapping a cause."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message}: {self.cause}"

    @classmethod
    def wrap(cls, message: str, error: BaseException) -> NetavarkError:
        """Return a new error that adds a context message in front of ``error``."""
        return NetavarkError(str(message), error)

    @property
    def root_cause(self) -> BaseException:
        """The innermost error of a chain of wrapped errors."""
        current: BaseException = self
        while isinstance(current, NetavarkError) and current.cause is not None:
            current = current.cause
        return current

    def print_json(self, stream: TextIO | None = None) -> None:
        """Write the error as a JSON object ``{"error": ...}``."""
        out = stream if stream is not None else sys.stdout
        json.dump({"error": str(self)}, out)
        out.flush()


class NetlinkError(NetavarkError):
    """An error reported by the kernel over netlink; ``code`` is a positive errno."""

    def __init__(self, code: int, message: str | None = None) -> None:
        self.code = code
        text = message if message is not None else os.strerror(code)
        super().__init__(f"Netlink error: {text} (os error {code})")


class SysctlError(NetavarkError):
    """Failure to read or write a sysctl value."""

    def __init__(
        self,
        message: str,
        *,
        not_found: bool = False,
        errno: int | None = None,
    ) -> None:
        super().__init__(message)
        self.not_found = not_found
        self.errno = errno


class NetavarkErrorList(NetavarkError):
    """Collects several errors so that cleanup can continue past failures."""

    def __init__(self, errors: Iterable[BaseException] = ()) -> None:
        self.errors: list[BaseException] = list(errors)
        super().__init__("netavark encountered multiple errors")

    def __str__(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        lines = "".join(f"\n\t- {err}" for err in self.errors)
        return f"{self.message}:{lines}"

    def __iter__(self) -> Iterator[BaseException]:
        return iter(self.errors)

    def append(self, error: BaseException) -> None:
        """Record one more error."""
        self.errors.append(error)

    def raise_if_any(self) -> None:
        """Raise this list if at least one error was recorded."""
        if self.errors:
            raise self