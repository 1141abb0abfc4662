#!/usr/bin/env python3
"""
Configuration of the statistics reader.

Settings come from an optional YAML file, for example:

    max_string_length: 16777216
    read_buffer_size: 65536
    file_prefix: node
    file_extension: prf
    output_format: json

Every key is optional; command line flags take precedence over the file.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import yaml

from file_scanner import DEFAULT_FILE_EXTENSION, DEFAULT_FILE_PREFIX
from print_handler import OutputFormat
from record_codec import DEFAULT_MAX_STRING_LENGTH
from stream_reader import DEFAULT_READ_BUFFER_SIZE


class ConfigError(ValueError):
    """Invalid configuration file."""


@dataclass(frozen=True)
class ReaderConfig:
    max_string_length: int = DEFAULT_MAX_STRING_LENGTH
    read_buffer_size: int = DEFAULT_READ_BUFFER_SIZE
    file_prefix: str = DEFAULT_FILE_PREFIX
    file_extension: str = DEFAULT_FILE_EXTENSION
    output_format: OutputFormat = OutputFormat.TEXT

    def with_overrides(self, **overrides: Any) -> 'ReaderConfig':
        """Returns a copy with every override that is not None applied."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


def config_from_dict(data: Optional[Dict[str, Any]]) -> ReaderConfig:
    """Builds a validated ReaderConfig from parsed YAML data."""
    if data is None:
        return ReaderConfig()
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping of settings")

    known = {f.name for f in fields(ReaderConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration key(s): {', '.join(map(str, unknown))}")

    values: Dict[str, Any] = {}

    for key in ('max_string_length', 'read_buffer_size'):
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigError(f"'{key}' must be a positive integer, got {value!r}")
            values[key] = value

    for key in ('file_prefix', 'file_extension'):
        if key in data:
            value = data[key]
            if not isinstance(value, str) or not value:
                raise ConfigError(f"'{key}' must be a non-empty string, got {value!r}")
            values[key] = value

    if 'output_format' in data:
        try:
            values['output_format'] = OutputFormat(data['output_format'])
        except ValueError:
            raise ConfigError(f"'output_format' must be one of: "
                              f"{', '.join(f.value for f in OutputFormat)}, got {data['output_format']!r}")

    return ReaderConfig(**values)


def load_config(path: Optional[str]) -> ReaderConfig:
    """Loads the configuration file; without a path returns the defaults.

    Raises:
        ConfigError: if the file cannot be read, is not valid YAML or has invalid settings.
    """
    if path is None:
        return ReaderConfig()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file {path}: {e}")

    return config_from_dict(data)
