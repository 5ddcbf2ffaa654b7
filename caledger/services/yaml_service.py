"""YAML file operations service."""

import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict

import yaml

from caledger.utils.file_utils import FileUtils

logger = logging.getLogger("caledger")


class _Dumper(yaml.SafeDumper):
    """SafeDumper that also knows about Enum values and tuples."""


def _enum_representer(dumper, data):
    return dumper.represent_scalar("tag:yaml.org,2002:str", data.value)


def _tuple_representer(dumper, data):
    return dumper.represent_list(list(data))


_Dumper.add_multi_representer(Enum, _enum_representer)
_Dumper.add_representer(tuple, _tuple_representer)


class YAMLService:
    """Service for YAML file operations."""

    @staticmethod
    def load_yaml(file_path: Path) -> Dict[str, Any]:
        """
        Load YAML file and return as dictionary.

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed YAML content as dictionary

        Raises:
            FileNotFoundError: If file doesn't exist
            yaml.YAMLError: If file is not valid YAML
        """
        if not file_path.exists():
            raise FileNotFoundError(f"YAML file not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
                logger.debug(f"Loaded YAML from: {file_path}")
                return data or {}
            except yaml.YAMLError as e:
                logger.error(f"Error parsing YAML file {file_path}: {e}")
                raise

    @staticmethod
    def dump_yaml(data: Dict[str, Any]) -> str:
        """
        Serialize a dictionary to YAML text.

        Datetimes are written as native YAML timestamps, Enums as their values.
        """
        return yaml.dump(data, Dumper=_Dumper, default_flow_style=False, allow_unicode=True, sort_keys=False)

    @staticmethod
    def save_yaml(file_path: Path, data: Dict[str, Any]) -> None:
        """
        Save dictionary to YAML file, replacing it atomically.

        Args:
            file_path: Path to save YAML file
            data: Data to save

        Raises:
            yaml.YAMLError: If data cannot be serialized to YAML
        """
        try:
            content = YAMLService.dump_yaml(data)
        except yaml.YAMLError as e:
            logger.error(f"Error saving YAML file {file_path}: {e}")
            raise
        FileUtils.write_file_atomic(file_path, content)
        logger.debug(f"Saved YAML to: {file_path}")

    @staticmethod
    def load_config_yaml(file_path: Path) -> Dict[str, Any]:
        """
        Load a model YAML, parsing ISO datetime strings written by older files.

        Args:
            file_path: Path to config YAML file

        Returns:
            Parsed configuration
        """
        data = YAMLService.load_yaml(file_path)

        for field in ("created_at", "not_before", "not_after"):
            if field in data and isinstance(data[field], str):
                try:
                    data[field] = datetime.fromisoformat(data[field].replace("Z", "+00:00"))
                except ValueError as e:
                    logger.warning(f"Error parsing datetime field {field}: {e}")

        return data
