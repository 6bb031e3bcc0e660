#!/usr/bin/env python3
"""
Configuration Manager for NetScout

Features:
- JSON configuration file merged over built-in defaults
- Environment variable overrides (``NETSCOUT_`` prefix)
- JSON Schema validation
- Typed accessors for each subsystem
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "netscout_config.json"


class ConfigSchema:
    """Configuration schema with validation"""

    SCHEMA = {
        "type": "object",
        "required": ["version", "general", "scanner", "detection", "geolocation", "monitor", "api"],
        "properties": {
            "version": {"type": "string", "pattern": r"^\d+\.\d+\.\d+$"},
            "general": {
                "type": "object",
                "properties": {
                    "log_level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR"]},
                    "output_format": {"type": "string", "enum": ["text", "json"]},
                    "colors_enabled": {"type": "boolean"}
                }
            },
            "scanner": {
                "type": "object",
                "required": ["target", "connect_timeout", "fingerprint_timeout"],
                "properties": {
                    "target": {"type": "string"},
                    "connect_scan": {"type": "boolean"},
                    "ports": {"type": "string", "pattern": r"^[\d,\-\s]*$"},
                    "connect_timeout": {"type": "number", "minimum": 0.05, "maximum": 30.0},
                    "fingerprint_timeout": {"type": "number", "minimum": 0.1, "maximum": 60.0},
                    "concurrency": {"type": "integer", "minimum": 1, "maximum": 1000},
                    "detect_versions": {"type": "boolean"},
                    "include_closed": {"type": "boolean"},
                    "external_scanner": {"type": "boolean"},
                    "external_timeout": {"type": "integer", "minimum": 1, "maximum": 600}
                }
            },
            "detection": {
                "type": "object",
                "properties": {
                    "direct_timeout": {"type": "number", "minimum": 0.5, "maximum": 60.0},
                    "proxied_timeout": {"type": "number", "minimum": 0.5, "maximum": 60.0},
                    "workers": {"type": "integer", "minimum": 1, "maximum": 64}
                }
            },
            "geolocation": {
                "type": "object",
                "required": ["live_lookups", "requests_per_minute"],
                "properties": {
                    "database": {"type": ["string", "null"]},
                    "live_lookups": {"type": "boolean"},
                    "requests_per_minute": {"type": "integer", "minimum": 1, "maximum": 1000},
                    "lookup_timeout": {"type": "number", "minimum": 0.5, "maximum": 30.0},
                    "max_ips": {"type": "integer", "minimum": 1, "maximum": 1000},
                    "max_orgs": {"type": "integer", "minimum": 1, "maximum": 1000}
                }
            },
            "monitor": {
                "type": "object",
                "properties": {
                    "interval": {"type": "number", "minimum": 1.0, "maximum": 3600.0}
                }
            },
            "api": {
                "type": "object",
                "required": ["host", "port"],
                "properties": {
                    "host": {"type": "string"},
                    "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                    "token": {"type": ["string", "null"]}
                }
            }
        }
    }

    @staticmethod
    def get_defaults() -> Dict[str, Any]:
        """Return default configuration"""
        return {
            "version": "1.0.0",
            "general": {
                "log_level": "INFO",
                "output_format": "text",
                "colors_enabled": True
            },
            "scanner": {
                "target": "127.0.0.1",
                "connect_scan": False,
                "ports": "",
                "connect_timeout": 0.8,
                "fingerprint_timeout": 3.0,
                "concurrency": 100,
                "detect_versions": False,
                "include_closed": False,
                "external_scanner": False,
                "external_timeout": 120
            },
            "detection": {
                "direct_timeout": 5.0,
                "proxied_timeout": 8.0,
                "workers": 8
            },
            "geolocation": {
                "database": None,
                "live_lookups": True,
                "requests_per_minute": 45,
                "lookup_timeout": 3.0,
                "max_ips": 100,
                "max_orgs": 30
            },
            "monitor": {
                "interval": 5.0
            },
            "api": {
                "host": "127.0.0.1",
                "port": 8080,
                "token": None
            }
        }


class ConfigManager:
    """
    Configuration manager with file, env, and validation support

    Usage:
        config = ConfigManager("netscout_config.json")
        config.load()
        timeout = config.get("scanner.connect_timeout")
        config.set("scanner.detect_versions", True)
        config.save()
    """

    ENV_PREFIX = "NETSCOUT_"

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_file: Path to JSON config file (default: netscout_config.json)
        """
        self.config_file = config_file or DEFAULT_CONFIG_FILE
        self.config = ConfigSchema.get_defaults()
        self.modified = False

    def load(self, config_file: Optional[str] = None, strict: bool = False) -> bool:
        """
        Load configuration from file

        Args:
            config_file: Optional path override
            strict: Raise ConfigError instead of falling back to defaults

        Returns:
            True if loaded successfully, False if defaults are in use

        Raises:
            ConfigError: On a missing, malformed or invalid file when strict
        """
        if config_file:
            self.config_file = config_file

        path = Path(self.config_file)
        if not path.exists():
            if strict:
                raise ConfigError(f"Config file not found: {self.config_file}")
            logger.info(f"Config file not found: {self.config_file}, using defaults")
            return False

        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            return self._reject(f"Config load error: {e}", strict)

        if not isinstance(loaded_config, dict):
            return self._reject("Config root must be a JSON object", strict)

        merged = ConfigSchema.get_defaults()
        self._merge_config(merged, loaded_config)
        try:
            self._check(merged)
        except ConfigError as e:
            return self._reject(str(e), strict)

        self.config = merged
        logger.info(f"Config loaded: {self.config_file}")
        return True

    def _reject(self, message: str, strict: bool) -> bool:
        if strict:
            raise ConfigError(message)
        logger.warning(f"{message}; using defaults")
        self.config = ConfigSchema.get_defaults()
        return False

    def save(self, config_file: Optional[str] = None) -> bool:
        """
        Save configuration to file

        Args:
            config_file: Optional path override

        Returns:
            True if saved successfully
        """
        if config_file:
            self.config_file = config_file

        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2)
        except OSError as e:
            logger.error(f"Config save error: {e}")
            return False

        logger.info(f"Config saved: {self.config_file}")
        self.modified = False
        return True

    def _merge_config(self, base: Dict, override: Dict) -> None:
        """Deep merge configuration"""
        for key, value in override.items():
            if (key in base and
                    isinstance(base[key], dict) and
                    isinstance(value, dict)):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    @staticmethod
    def _check(config: Dict[str, Any]) -> None:
        try:
            jsonschema.validate(instance=config, schema=ConfigSchema.SCHEMA)
        except jsonschema.ValidationError as e:
            location = ".".join(str(p) for p in e.absolute_path) or "<root>"
            raise ConfigError(f"{location}: {e.message}") from e

    def validate(self) -> bool:
        """Validate the current configuration against the schema"""
        try:
            self._check(self.config)
        except ConfigError as e:
            logger.warning(f"Validation error: {e}")
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Args:
            key: Configuration key (e.g., "scanner.connect_timeout")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        env_key = self.ENV_PREFIX + key.upper().replace(".", "_")
        env_value = os.environ.get(env_key)
        if env_value is not None:
            return self._parse_env_value(env_value)

        value = self.config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return default if value is None else value

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value"""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def set(self, key: str, value: Any) -> bool:
        """
        Set configuration value using dot notation

        Args:
            key: Configuration key
            value: Value to set

        Returns:
            True if successful
        """
        keys = key.split(".")

        current = self.config
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value
        self.modified = True
        return True

    def as_dict(self) -> Dict[str, Any]:
        """Deep copy of the file/default configuration (env overrides not applied)"""
        return copy.deepcopy(self.config)

    def scanner_options(self) -> Dict[str, Any]:
        """Keyword arguments for PortScanner"""
        return {
            "target": self.get("scanner.target"),
            "connect_scan": self.get("scanner.connect_scan", False),
            "detect_versions": self.get("scanner.detect_versions", False),
            "include_closed": self.get("scanner.include_closed", False),
            "use_external_scanner": self.get("scanner.external_scanner", False),
            "connect_timeout": self.get("scanner.connect_timeout"),
            "fingerprint_timeout": self.get("scanner.fingerprint_timeout"),
            "external_timeout": self.get("scanner.external_timeout", 120),
            "concurrency": self.get("scanner.concurrency", 100),
        }

    def detection_options(self) -> Dict[str, Any]:
        """Keyword arguments for DetectionEngine"""
        return {
            "direct_timeout": self.get("detection.direct_timeout", 5.0),
            "proxied_timeout": self.get("detection.proxied_timeout", 8.0),
            "workers": self.get("detection.workers", 8),
        }


def create_default_config(filename: str = DEFAULT_CONFIG_FILE) -> bool:
    """Create default configuration file"""
    config = ConfigManager(filename)
    config.config = ConfigSchema.get_defaults()
    return config.save()


__all__ = ['ConfigSchema', 'ConfigManager', 'ConfigError', 'create_default_config', 'DEFAULT_CONFIG_FILE']
