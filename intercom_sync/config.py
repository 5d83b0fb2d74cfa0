"""
Configuration loading and setting resolution for Intercom Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults. It also resolves individual secrets through an
ordered list of setting sources (environment first, then defined constants).
"""

import os
import yaml
import logging
from typing import Dict, Any, List, Optional, Callable

logger = logging.getLogger(__name__)

ACCESS_TOKEN_SETTING = 'INTERCOM_PERSONAL_ACCESS_TOKEN'
APP_ID_SETTING = 'INTERCOM_APP_ID'
SECRET_KEY_SETTING = 'INTERCOM_SECRET_KEY'

USER_LIST_PREFIX = '%$'

DEFAULT_USER_FIELDS = [
    'user_id',
    'email',
    'id',
    'signed_up_at',
    'name',
    'phone',
    'last_seen_ip',
    'last_seen_user_agent',
    'last_request_at',
    'unsubscribed_from_emails',
    'update_last_request_at',
    'new_session',
    'companies',
]

DEFAULT_COMPANY_FIELDS = [
    'company_id',
    'id',
    'name',
    'remote_created_at',
    'created_at',
    'monthly_spend',
    'plan',
    'size',
    'website',
    'industry',
]


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


# Setting sources. Each is a callable name -> value or None.

_defined_constants: Dict[str, Any] = {}


def define_constant(name: str, value: Any) -> None:
    """Register a named constant used as fallback after the environment."""
    _defined_constants[name] = value


def undefine_constant(name: str) -> None:
    _defined_constants.pop(name, None)


def environment_source(name: str) -> Optional[str]:
    """Read a setting from the process environment."""
    return os.environ.get(name) or None


def constants_source(name: str) -> Optional[Any]:
    """Read a setting from the defined constants registry."""
    value = _defined_constants.get(name)
    if value in (None, ''):
        return None
    return value


DEFAULT_SETTING_SOURCES: List[Callable[[str], Optional[Any]]] = [
    environment_source,
    constants_source,
]


def get_setting(name: str, sources: Optional[List[Callable[[str], Optional[Any]]]] = None) -> Optional[Any]:
    """
    Get a setting from the first source that defines it.

    Args:
        name: Setting name, e.g. INTERCOM_APP_ID
        sources: Ordered setting sources (defaults to environment, then constants)

    Returns:
        The setting value, or None if no source defines it
    """
    for source in (sources if sources is not None else DEFAULT_SETTING_SOURCES):
        value = source(name)
        if value is not None:
            return value
    return None


def parse_user_list_reference(reference: str) -> str:
    """
    Extract the service name from a user_list reference of the form %$ServiceName.

    Raises:
        ConfigurationError: If the reference is not of that form
    """
    if (not isinstance(reference, str) or not reference.startswith(USER_LIST_PREFIX)
            or len(reference) <= len(USER_LIST_PREFIX)):
        raise ConfigurationError(
            f"Please set user_list to a string of the form {USER_LIST_PREFIX}ServiceName, got {reference!r}"
        )
    return reference[len(USER_LIST_PREFIX):]


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'directory.bind_password': 'LDAP_BIND_PASSWORD',
        'intercom.truststore_password': 'INTERCOM_TRUSTSTORE_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()
        self._register_constants()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate configuration fields."""
        errors = []

        intercom_config = self.config.get('intercom') or {}
        if not isinstance(intercom_config, dict):
            errors.append("intercom section must be a mapping")
            intercom_config = {}

        user_list = intercom_config.get('user_list')
        if user_list:
            try:
                parse_user_list_reference(user_list)
            except ConfigurationError as e:
                errors.append(str(e))

        for field in ('user_fields', 'company_fields'):
            value = intercom_config.get(field)
            if value is not None and not isinstance(value, list):
                errors.append(f"intercom.{field} must be a list of field names")

        directory_config = self.config.get('directory') or {}
        directory_type = directory_config.get('type', 'static')
        if directory_type == 'ldap':
            for field in ('server_url', 'bind_dn', 'bind_password'):
                if not directory_config.get(field):
                    errors.append(f"Missing required LDAP directory field: {field}")
        elif directory_type == 'static':
            members = directory_config.get('members', [])
            if not isinstance(members, list):
                errors.append("directory.members must be a list")
        else:
            errors.append(f"Unknown directory type: {directory_type}")

        user_sources = self.config.get('user_sources')
        if user_sources is not None:
            if not isinstance(user_sources, dict):
                errors.append("user_sources section must map names to 'module:callable' paths")
            else:
                for name, path in user_sources.items():
                    if not isinstance(path, str) or ':' not in path:
                        errors.append(f"user_sources.{name} must be a 'module:callable' path")

        constants = self.config.get('constants')
        if constants is not None and not isinstance(constants, dict):
            errors.append("constants section must be a mapping")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        intercom_defaults = {
            'user_list': None,
            'user_fields': list(DEFAULT_USER_FIELDS),
            'company_fields': list(DEFAULT_COMPANY_FIELDS),
            'base_url': 'https://api.intercom.io',
            'api_version': '1.4',
            'timeout': 30,
            'verify_ssl': True,
        }
        intercom_config = self.config.setdefault('intercom', {}) or {}
        self.config['intercom'] = intercom_config
        for key, value in intercom_defaults.items():
            intercom_config.setdefault(key, value)

        script_tags_defaults = {
            'anonymous_access': False,
            'member_attributes': {},
        }
        script_tags_config = self.config.setdefault('script_tags', {}) or {}
        self.config['script_tags'] = script_tags_config
        for key, value in script_tags_defaults.items():
            script_tags_config.setdefault(key, value)

        directory_config = self.config.setdefault('directory', {}) or {}
        self.config['directory'] = directory_config
        directory_config.setdefault('type', 'static')
        if directory_config['type'] == 'ldap':
            ldap_defaults = {
                'user_base_dn': '',
                'user_filter': '(objectClass=person)',
                'attributes': ['cn', 'givenName', 'sn', 'mail', 'uid', 'entryUUID', 'createTimestamp'],
                'page_size': 500,
            }
            for key, value in ldap_defaults.items():
                directory_config.setdefault(key, value)
        else:
            directory_config.setdefault('members', [])

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {}) or {}
        self.config['logging'] = logging_config
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        self.config.setdefault('constants', {})

    def _register_constants(self):
        """Expose the constants section through the constants setting source."""
        for name, value in (self.config.get('constants') or {}).items():
            define_constant(name, value)
            logger.debug(f"Defined constant {name}")


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
