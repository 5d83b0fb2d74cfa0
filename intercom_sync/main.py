"""
Command line entry point for Intercom Sync.

Wires configuration, logging, the member directory and named user sources into an
Intercom instance, and exposes bulk loading, job status, event tracking and a
health check as sub-commands.
"""

import sys
import json
import logging
import argparse
import importlib
from datetime import datetime
from typing import Dict, Any, List, Optional

from intercom_sync.config import load_config, ConfigurationError, parse_user_list_reference
from intercom_sync.client import IntercomAPIError
from intercom_sync.intercom import Intercom, TrackingError
from intercom_sync.ldap_directory import DirectoryConnectionError, DirectoryQueryError
from intercom_sync.logging_setup import setup_logging
from intercom_sync.script_tags import IntercomScriptTags
from intercom_sync.user_sources import UserSourceRegistry, create_directory

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_API_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_DIRECTORY_ERROR = 3
EXIT_UNEXPECTED = 4


def load_factory(import_path: str):
    """
    Import a factory given as 'package.module:callable'.

    Raises:
        ConfigurationError: If the path is malformed or cannot be imported
    """
    module_name, _, attr_name = import_path.partition(':')
    if not module_name or not attr_name:
        raise ConfigurationError(f"User source must be given as 'module:callable', got '{import_path}'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Failed to import user source module {module_name}: {e}")

    factory = getattr(module, attr_name, None)
    if factory is None or not callable(factory):
        raise ConfigurationError(f"No callable '{attr_name}' in module {module_name}")
    return factory


def build_intercom(config: Dict[str, Any]) -> Intercom:
    """
    Create an Intercom instance from a loaded configuration.

    Named user sources from the ``user_sources`` section are imported here, and the
    ``user_list`` reference is checked against them, so a bad reference fails before
    any member is read.
    """
    intercom_config = config.get('intercom', {})
    directory = create_directory(config.get('directory', {}))

    registry = UserSourceRegistry()
    registry.register('Members', directory.all_members)
    for name, import_path in (config.get('user_sources') or {}).items():
        registry.register(name, load_factory(import_path))

    user_list = intercom_config.get('user_list')
    if user_list:
        name = parse_user_list_reference(user_list)
        if name not in registry:
            raise ConfigurationError(
                f"user_list refers to unknown user source '{name}' (registered: {', '.join(registry.names())})"
            )

    script_tags = IntercomScriptTags(config.get('script_tags', {}))
    return Intercom(intercom_config, directory=directory, registry=registry, script_tags=script_tags)


def parse_event_data(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """Parse key=value pairs; values that parse as JSON are decoded."""
    data = {}
    for pair in pairs or []:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise ValueError(f"Event data must be key=value, got '{pair}'")
        try:
            data[key] = json.loads(value)
        except json.JSONDecodeError:
            data[key] = value
    return data


class IntercomSyncApp:
    """Runs a single command against Intercom and maps failures to exit codes."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.config = None
        self.intercom = None

    def _prepare(self):
        self.config = load_config(self.config_path)
        setup_logging(self.config.get('logging', {}))
        self.intercom = build_intercom(self.config)

    def _run(self, action) -> int:
        try:
            self._prepare()
            action()
            return EXIT_OK
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            print(f"Configuration error: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        except (DirectoryConnectionError, DirectoryQueryError) as e:
            logger.error(f"Directory error: {e}")
            print(f"Directory error: {e}", file=sys.stderr)
            return EXIT_DIRECTORY_ERROR
        except (IntercomAPIError, TrackingError) as e:
            logger.error(f"Intercom error: {e}")
            print(f"Intercom error: {e}", file=sys.stderr)
            return EXIT_API_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            print(f"Unexpected error: {e}", file=sys.stderr)
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def bulk_load(self) -> int:
        """Submit every member of the configured user list as one bulk job."""
        def action():
            started = datetime.now()
            job = self.intercom.bulk_load_users(self.intercom.get_user_list())
            runtime = (datetime.now() - started).total_seconds()
            logger.info(f"Bulk load submitted in {runtime:.2f} seconds")
            print(json.dumps({'job_id': job.id}))
        return self._run(action)

    def job_status(self, job_id: str, show_errors: bool = False) -> int:
        def action():
            job = self.intercom.get_bulk_job(job_id)
            status = {'job_id': job.id, 'info': job.get_info()}
            if show_errors:
                status['errors'] = job.get_errors()
            print(json.dumps(status, indent=2, default=str))
        return self._run(action)

    def track_event(self, event_name: str, email: Optional[str] = None,
                    user_id: Optional[str] = None, data: Optional[List[str]] = None) -> int:
        def action():
            member = {}
            if email:
                member['email'] = email
            if user_id:
                member['id'] = user_id
            self.intercom.track_event(event_name, parse_event_data(data), member=member)
            print(json.dumps({'tracked': event_name}))
        return self._run(action)

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration and credentials without contacting Intercom.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._prepare()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except Exception as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        for check, getter in (('access_token', lambda: self.intercom.access_token),
                              ('app_id', lambda: self.intercom.app_id)):
            try:
                getter()
                health_status['checks'][check] = {'status': 'pass', 'message': 'Set'}
            except ConfigurationError as e:
                health_status['checks'][check] = {'status': 'fail', 'message': str(e)}
                health_status['status'] = 'unhealthy'

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.intercom:
            self.intercom.close()
            disconnect = getattr(self.intercom.directory, 'disconnect', None)
            if disconnect:
                disconnect()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Intercom user sync and event tracking')
    parser.add_argument('--config', '-c', help='Path to configuration file')

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('bulk-load', help='Submit all configured users as a bulk job')

    status_parser = subparsers.add_parser('job-status', help='Show the status of a bulk job')
    status_parser.add_argument('job_id')
    status_parser.add_argument('--errors', action='store_true', help='Include per-item errors')

    event_parser = subparsers.add_parser('track-event', help='Track an event for a user')
    event_parser.add_argument('event_name')
    event_parser.add_argument('--email')
    event_parser.add_argument('--user-id')
    event_parser.add_argument('--data', action='append', metavar='KEY=VALUE',
                              help='Event metadata, may be repeated')

    subparsers.add_parser('health-check', help='Validate configuration and credentials')

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)
    app = IntercomSyncApp(config_path=args.config)

    if args.command == 'health-check':
        health_status = app.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)
    elif args.command == 'bulk-load':
        sys.exit(app.bulk_load())
    elif args.command == 'job-status':
        sys.exit(app.job_status(args.job_id, show_errors=args.errors))
    elif args.command == 'track-event':
        sys.exit(app.track_event(args.event_name, email=args.email, user_id=args.user_id, data=args.data))


if __name__ == "__main__":
    main()
