#!/usr/bin/env python3
"""
Generator Configuration
=======================
One explicit configuration object, passed to every component of a build.

Can be loaded from environment variables (``SCANNER_*``, with ``.env``
support), from a JSON or YAML file, or built directly.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml
from dotenv import load_dotenv

from analyzers.diagnostics import ConfigurationFailure
from analyzers.model_analyzer import DEFAULT_MODEL_BASES
from analyzers.route_analyzer import DEFAULT_ANY_METHODS, HTTP_METHODS
from analyzers.validation_analyzer import DEFAULT_VALIDATOR_BASES

CACHE_BACKENDS = ('memory', 'sqlite', 'none')

DEFAULT_IGNORE_DIRS: Set[str] = {
    # Version control
    ".git", ".svn", ".hg", ".bzr",
    # Python
    "__pycache__", ".pytest_cache", ".mypy_cache", ".tox", ".nox",
    "venv", ".venv", "env", "virtualenv", ".virtualenv",
    "site-packages", ".eggs", "dist", "build", "egg-info",
    # JavaScript
    "node_modules",
    # IDE/OS
    ".vscode", ".idea", ".DS_Store",
    # Migrations are not part of the API surface
    "migrations", "alembic",
}

# Middleware name → security scheme name
DEFAULT_MIDDLEWARE_SECURITY = {
    'auth': 'bearerAuth',
    'auth:api': 'bearerAuth',
    'jwt': 'bearerAuth',
    'token': 'bearerAuth',
    'api_key': 'apiKeyAuth',
    'apikey': 'apiKeyAuth',
    'session': 'cookieAuth',
    'basic': 'basicAuth',
    'oauth': 'oauth2',
}


@dataclass
class GeneratorConfig:
    """
    Generator configuration with sensible defaults.
    Can be loaded from environment variables, config file, or CLI args.
    """
    # Document info
    title: str = "API Documentation"
    version: str = "1.0.0"
    description: str = ""
    servers: List[Dict[str, str]] = field(default_factory=list)

    # Discovery
    source_root: Optional[str] = None
    extensions: List[str] = field(default_factory=lambda: ['.py'])
    ignore_dirs: Set[str] = field(default_factory=set)
    max_file_size_mb: int = 10

    # Analysis
    model_bases: List[str] = field(default_factory=lambda: list(DEFAULT_MODEL_BASES))
    validator_bases: List[str] = field(default_factory=lambda: list(DEFAULT_VALIDATOR_BASES))
    decorator_routes: bool = True
    any_methods: List[str] = field(default_factory=lambda: list(DEFAULT_ANY_METHODS))
    flatten: bool = False

    # Security
    security_schemes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    middleware_security: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MIDDLEWARE_SECURITY))
    default_security: List[str] = field(default_factory=list)

    # Cache
    cache_backend: str = "memory"        # memory, sqlite, none
    cache_path: str = ".api-doc-cache.db"
    cache_ttl: int = 0                   # seconds, 0 = no expiry
    use_mtime: bool = False

    def __post_init__(self):
        """Apply default ignore dirs if not set."""
        if not self.ignore_dirs:
            self.ignore_dirs = DEFAULT_IGNORE_DIRS.copy()
        else:
            self.ignore_dirs = set(self.ignore_dirs)

    @classmethod
    def from_env(cls) -> "GeneratorConfig":
        """Load configuration from environment variables (and a .env file if present)."""
        load_dotenv()
        servers = []
        if os.getenv("SCANNER_SERVER_URL"):
            servers.append({"url": os.getenv("SCANNER_SERVER_URL")})
        try:
            return cls(
                title=os.getenv("SCANNER_TITLE", "API Documentation"),
                version=os.getenv("SCANNER_VERSION", "1.0.0"),
                description=os.getenv("SCANNER_DESCRIPTION", ""),
                servers=servers,
                source_root=os.getenv("SCANNER_SOURCE_ROOT"),
                max_file_size_mb=int(os.getenv("SCANNER_MAX_FILE_SIZE", 10)),
                decorator_routes=os.getenv("SCANNER_DECORATOR_ROUTES", "true").lower() == "true",
                flatten=os.getenv("SCANNER_FLATTEN", "false").lower() == "true",
                cache_backend=os.getenv("SCANNER_CACHE_BACKEND", "memory"),
                cache_path=os.getenv("SCANNER_CACHE_PATH", ".api-doc-cache.db"),
                cache_ttl=int(os.getenv("SCANNER_CACHE_TTL", 0)),
                use_mtime=os.getenv("SCANNER_USE_MTIME", "false").lower() == "true",
            )
        except ValueError as e:
            raise ConfigurationFailure(f"Invalid numeric environment setting: {e}")

    @classmethod
    def from_file(cls, path: str) -> "GeneratorConfig":
        """Load configuration from JSON or YAML file."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.endswith(('.yaml', '.yml')):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except OSError as e:
            raise ConfigurationFailure(f"Cannot read config file: {e}", path=path)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationFailure(f"Malformed config file: {e}", path=path)

        if not isinstance(data, dict):
            raise ConfigurationFailure("Config file must contain a mapping", path=path)

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationFailure(f"Unknown config keys: {', '.join(unknown)}", path=path)

        # Convert ignore_dirs list to set if present
        if 'ignore_dirs' in data and isinstance(data['ignore_dirs'], list):
            data['ignore_dirs'] = set(data['ignore_dirs'])

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        data = asdict(self)
        data['ignore_dirs'] = sorted(self.ignore_dirs)
        return data

    def validate(self) -> "GeneratorConfig":
        """
        Check the configuration before a build.

        Raises:
            ConfigurationFailure: for a missing source root or invalid values
        """
        if self.source_root is not None and not Path(self.source_root).is_dir():
            raise ConfigurationFailure(f"Source root does not exist or is not a directory: {self.source_root}",
                                       path=self.source_root)
        if self.cache_backend not in CACHE_BACKENDS:
            raise ConfigurationFailure(
                f"Unknown cache backend '{self.cache_backend}' (expected one of {', '.join(CACHE_BACKENDS)})")
        if self.max_file_size_mb <= 0:
            raise ConfigurationFailure("max_file_size_mb must be positive")
        if self.cache_ttl < 0:
            raise ConfigurationFailure("cache_ttl must not be negative")
        invalid = [m for m in self.any_methods if m.upper() not in HTTP_METHODS]
        if invalid or not self.any_methods:
            raise ConfigurationFailure(f"Invalid any_methods: {invalid or self.any_methods}")
        for name, scheme in self.security_schemes.items():
            if not isinstance(scheme, dict) or 'type' not in scheme:
                raise ConfigurationFailure(f"Security scheme '{name}' must be a mapping with a 'type'")
        return self
