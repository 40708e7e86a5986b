"""Network driver that delegates to an external plugin executable."""

from __future__ import annotations

import json
import os
import subprocess
from pathlib import Path
from typing import Any

from netavark.errors import NetavarkError
from netavark.netlink import Socket
from netavark.types import StatusBlock
from netavark.vlan import DriverInfo


class PluginDriver:
    """Runs a plugin binary with ``setup`` or ``teardown`` and JSON on stdin."""

    def __init__(self, path: str | os.PathLike[str], info: DriverInfo) -> None:
        self.path = Path(path)
        self.info = info

    def network_name(self) -> str:
        return self.info.network.name

    def validate(self) -> None:
        """Accept every config: the plugin API has no validate call, to save a fork."""

    def setup(self, host_sock: Socket | None, netns_sock: Socket | None) -> tuple[StatusBlock, None]:
        """Run the plugin's setup and return the status block it printed."""
        status = self._run(setup=True)
        if status is None:
            raise NetavarkError(f'plugin "{self.path.name}" failed: no status block returned')
        return status, None

    def teardown(self, host_sock: Socket | None, netns_sock: Socket | None) -> None:
        """Run the plugin's teardown."""
        self._run(setup=False)

    def _run(self, setup: bool) -> StatusBlock | None:
        try:
            return self._exec_plugin(setup, self.info.netns_path)
        except NetavarkError as err:
            raise NetavarkError.wrap(f'plugin "{self.path.name}" failed', err) from err

    def _input(self) -> dict[str, Any]:
        info = self.info
        mappings = info.port_mappings
        return {
            "container_id": info.container_id,
            "container_name": info.container_name,
            "port_mappings": None if mappings is None else [m.to_dict() for m in mappings],
            "network": info.network.to_dict(),
            "network_options": info.per_network_opts.to_dict(),
        }

    def _exec_plugin(self, setup: bool, netns: str) -> StatusBlock | None:
        payload = json.dumps(self._input(), separators=(",", ":")).encode()
        command = [str(self.path), "setup" if setup else "teardown", netns]
        try:
            child = subprocess.Popen(
                command, stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=None
            )
        except OSError as err:
            raise NetavarkError(str(err), err) from err

        # communicate() closes stdin after writing so the plugin sees EOF.
        try:
            output, _ = child.communicate(payload)
        except OSError as err:
            child.kill()
            child.wait()
            raise NetavarkError.wrap("read into buffer", err) from err

        code = child.returncode
        if code < 0:
            raise NetavarkError("plugin killed by signal")
        if code == 0:
            if not setup:
                return None
            return StatusBlock.from_dict(_decode(output))

        data = _decode(output)
        if not isinstance(data, dict) or not isinstance(data.get("error"), str):
            raise NetavarkError(f"exit code {code}, invalid error output from plugin")
        raise NetavarkError(f"exit code {code}, message: {data['error']}")


def _decode(output: bytes) -> Any:
    try:
        return json.loads(output)
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        raise NetavarkError(str(err)) from err