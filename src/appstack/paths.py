from __future__ import annotations

import os
import pathlib


class Paths:
    @property
    def root(self) -> pathlib.Path:
        """Return the stage configuration directory.

        Holds the shared ``appstack.yaml`` defaults and one directory per
        stage under ``stages/``.

        Raises:
            RuntimeError: If APPSTACK_ROOT is not set in the environment

        """
        if "APPSTACK_ROOT" not in os.environ:
            msg = "APPSTACK_ROOT environment variable not set."
            raise RuntimeError(msg)

        return pathlib.Path(os.environ["APPSTACK_ROOT"])

    @property
    def stages(self) -> pathlib.Path:
        return self.root / "stages"

    def stage(self, stage_name: str) -> pathlib.Path:
        return self.stages / stage_name
