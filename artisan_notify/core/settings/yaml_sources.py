"""YAML settings sources with conf.d directory support.

Each settings domain may be configured from an optional YAML file plus a
directory of override files merged in alphabetical order::

    conf/notifications.yaml
    conf/notifications.d/10-rate-limits.yaml

Files are optional; when none exist the source contributes nothing and the
environment wins. ``CONFIG_DIR`` relocates the base directory.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings.sources.providers.yaml import YamlConfigSettingsSource

if TYPE_CHECKING:
    from pydantic_settings import BaseSettings


class ConfDYamlConfigSettingsSource(YamlConfigSettingsSource):
    """YAML source that loads ``<name>.yaml`` followed by ``<name>.d/*.yaml``."""

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: str,
        confd_dir: str | None = None,
        config_dir_env: str = "CONFIG_DIR",
        base_dir: str = "conf",
        yaml_file_encoding: str | None = "utf-8",
    ) -> None:
        config_base = Path(os.getenv(config_dir_env, base_dir))

        yaml_files: list[Path] = []
        main_file = config_base / yaml_file
        if main_file.exists():
            yaml_files.append(main_file)

        if confd_dir:
            confd_path = config_base / confd_dir
            if confd_path.is_dir():
                yaml_files.extend(sorted(confd_path.glob("*.yaml")))
                yaml_files.extend(sorted(confd_path.glob("*.yml")))

        self._yaml_files = yaml_files

        super().__init__(
            settings_cls=settings_cls,
            yaml_file=yaml_files or None,
            yaml_file_encoding=yaml_file_encoding,
        )

    def __repr__(self) -> str:
        files_str = ", ".join(str(f) for f in self._yaml_files)
        return f"{self.__class__.__name__}(yaml_files=[{files_str}])"


def create_yaml_source(
    settings_cls: type[BaseSettings], name: str,
) -> ConfDYamlConfigSettingsSource:
    """Create the YAML source for one settings domain.

    Args:
        settings_cls: The settings class being configured.
        name: Domain name, e.g. ``"app"`` loads ``conf/app.yaml`` and ``conf/app.d/``.

    Returns:
        Configured YAML settings source.
    """
    return ConfDYamlConfigSettingsSource(
        settings_cls,
        yaml_file=f"{name}.yaml",
        confd_dir=f"{name}.d",
    )
