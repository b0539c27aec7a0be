"""Access to the dirauth configuration from request handlers."""

from __future__ import annotations

import os
from pathlib import Path

from ..config import Config
from ..constants import CONFIG_PATH, CONFIG_PATH_ENV

__all__ = ["ConfigDependency", "config_dependency"]


class ConfigDependency:
    """Load the dirauth configuration on first use and cache it.

    The file to load is fixed when the configuration is first needed, not
    when the dependency is created, so the environment can be set after
    import. Loading also configures logging at the level the file requests.

    Parameters
    ----------
    path
        Configuration file to load. If not given, the path comes from the
        environment variable named by `~dirauth.constants.CONFIG_PATH_ENV`,
        falling back to `~dirauth.constants.CONFIG_PATH`.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._config: Config | None = None

    async def __call__(self) -> Config:
        return self.config()

    @property
    def config_path(self) -> Path:
        """File the configuration is, or will be, loaded from."""
        if self._path is None:
            self._path = Path(os.getenv(CONFIG_PATH_ENV, CONFIG_PATH))
        return self._path

    def config(self) -> Config:
        """Return the configuration, loading it if necessary.

        Usable from code that is not async, such as application setup and
        test support.

        Returns
        -------
        Config
            The loaded configuration.
        """
        if self._config is None:
            self._config = self._load(self.config_path)
        return self._config

    def set_config_path(self, path: Path) -> None:
        """Switch to a different configuration file.

        The new file is loaded immediately, so errors in it are raised here
        rather than on the next request.

        Parameters
        ----------
        path
            Path to the new configuration file.
        """
        self._config = self._load(path)
        self._path = path

    @staticmethod
    def _load(path: Path) -> Config:
        config = Config.from_file(path)
        config.configure_logging()
        return config


config_dependency = ConfigDependency()
"""Dependency returning the configuration of the running application."""
