"""The interface a netavark network plugin implements, and the runner that serves it."""

from __future__ import annotations

import json
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TextIO

from netavark.errors import NetavarkError
from netavark.types import Network, NetworkPluginExec, StatusBlock

API_VERSION = "1.0.0"


def _dump(value: Any, out: TextIO) -> None:
    json.dump(value, out, separators=(",", ":"))
    out.flush()


@dataclass
class Info:
    """Information about a plugin, printed by the ``info`` command."""

    version: str
    api_version: str = API_VERSION
    extra_info: dict[str, str] | None = None

    def to_dict(self) -> dict[str, str]:
        """Return the info with the extra fields flattened into it."""
        result = {"version": self.version, "api_version": self.api_version}
        if self.extra_info:
            result.update(self.extra_info)
        return result


class Plugin(ABC):
    """A network plugin: creates network configs and sets up and tears down networks."""

    @abstractmethod
    def create(self, network: Network) -> Network:
        """Validate and complete a network config, returning the result."""

    @abstractmethod
    def setup(self, netns: str, opts: NetworkPluginExec) -> StatusBlock:
        """Set up the network in the namespace at ``netns``."""

    @abstractmethod
    def teardown(self, netns: str, opts: NetworkPluginExec) -> None:
        """Tear down the network in the namespace at ``netns``."""


class PluginExec:
    """Dispatches command-line calls to a plugin, speaking JSON on stdin and stdout."""

    def __init__(
        self,
        plugin: Plugin,
        info: Info,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.plugin = plugin
        self.info = info
        self._stdin = stdin
        self._stdout = stdout

    @property
    def _in(self) -> TextIO:
        return self._stdin if self._stdin is not None else sys.stdin

    @property
    def _out(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    def exec(self, argv: Sequence[str] | None = None) -> None:
        """Run the command in ``argv`` (program name first); exit 1 with a JSON error on failure."""
        args = list(sys.argv if argv is None else argv)
        try:
            self._inner_exec(args)
        except Exception as err:  # every failure is reported to the caller as JSON
            try:
                _dump({"error": str(err)}, self._out)
            except (OSError, ValueError) as write_err:
                print(f"failed to write json error: {write_err}: {err}")
            raise SystemExit(1) from err

    def _read_json(self) -> Any:
        try:
            return json.load(self._in)
        except json.JSONDecodeError as err:
            raise NetavarkError(str(err)) from err

    def _inner_exec(self, args: list[str]) -> None:
        if not args:
            raise NetavarkError("zero arguments given")
        rest = args[1:]
        command = rest[0] if rest else None

        match command:
            case "create":
                network = Network.from_dict(self._read_json())
                network = self.plugin.create(network)
                _dump(network.to_dict(), self._out)
            case "setup":
                netns = self._netns(rest)
                opts = NetworkPluginExec.from_dict(self._read_json())
                status = self.plugin.setup(netns, opts)
                _dump(status.to_dict(), self._out)
            case "teardown":
                netns = self._netns(rest)
                opts = NetworkPluginExec.from_dict(self._read_json())
                self.plugin.teardown(netns, opts)
            case "info" | None:
                _dump(self.info.to_dict(), self._out)
            case unknown:
                raise NetavarkError(f"unknown subcommand: {unknown}")

    @staticmethod
    def _netns(rest: list[str]) -> str:
        if len(rest) < 2:
            raise NetavarkError("netns path argument is missing")
        return rest[1]