"""
Intercom REST API client.

This module provides the HTTP client used to talk to the Intercom API, along with
SSL/truststore handling and the resource groups (bulk, events, jobs) used by the
sync entry point.
"""

import json
import ssl
import logging
from typing import Dict, Any, Optional, Union
from urllib.parse import urlparse
from http.client import HTTPSConnection, HTTPConnection, HTTPException

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://api.intercom.io'
DEFAULT_API_VERSION = '1.4'


class IntercomAPIError(Exception):
    """Raised when the Intercom API returns an error or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class IntercomAuthenticationError(IntercomAPIError):
    """Raised when the access token is rejected."""
    pass


class BulkResource:
    """Bulk job endpoints."""

    def __init__(self, client: 'IntercomClient'):
        self.client = client

    def users(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a bulk user job. Returns the created job, including its id."""
        return self.client.post('/bulk/users', payload)


class EventsResource:
    """Event submission endpoints."""

    def __init__(self, client: 'IntercomClient'):
        self.client = client

    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.post('/events', payload)


class JobsResource:
    """Bulk job status endpoints."""

    def __init__(self, client: 'IntercomClient'):
        self.client = client

    def get(self, job_id: str) -> Dict[str, Any]:
        return self.client.get(f'/jobs/{job_id}')

    def errors(self, job_id: str) -> Dict[str, Any]:
        return self.client.get(f'/jobs/{job_id}/error')


class IntercomClient:
    """
    JSON client for the Intercom API.

    Authenticates every request with the personal access token as a Bearer token.
    Resource groups are exposed as attributes: ``client.bulk.users(...)``,
    ``client.events.create(...)`` and ``client.jobs.get(...)``.
    """

    def __init__(self, access_token: str, config: Optional[Dict[str, Any]] = None):
        """
        Initialize Intercom API client.

        Args:
            access_token: Intercom personal access token
            config: Intercom configuration section (base_url, api_version, timeout, SSL settings)
        """
        if not access_token:
            raise IntercomAuthenticationError("An access token is required to create an Intercom client")

        self.config = config or {}
        self.base_url = self.config.get('base_url') or DEFAULT_BASE_URL
        self.api_version = str(self.config.get('api_version') or DEFAULT_API_VERSION)
        self.timeout = self.config.get('timeout', 30)
        self.verify_ssl = self.config.get('verify_ssl', True)

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None

        self.auth_headers = {
            'Authorization': f"Bearer {access_token}",
            'Accept': 'application/json',
            'Intercom-Version': self.api_version,
        }

        self._setup_ssl_context()

        self.bulk = BulkResource(self)
        self.events = EventsResource(self)
        self.jobs = JobsResource(self)

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.host}")
            return

        self.ssl_context = ssl.create_default_context()

        truststore_file = self.config.get('truststore_file')
        if truststore_file:
            self._load_truststore(truststore_file)

    def _load_truststore(self, truststore_file: str):
        """Load custom truststore/CA certificates (PEM or PKCS12)."""
        truststore_type = self.config.get('truststore_type', 'PEM').upper()
        truststore_password = self.config.get('truststore_password')

        try:
            if truststore_type == 'PEM':
                self.ssl_context.load_verify_locations(cafile=truststore_file)
                logger.info(f"Loaded PEM truststore: {truststore_file}")

            elif truststore_type == 'PKCS12':
                from cryptography.hazmat.primitives import serialization
                from cryptography.hazmat.primitives.serialization import pkcs12

                with open(truststore_file, 'rb') as f:
                    p12_data = f.read()

                _, certificate, additional_certificates = pkcs12.load_key_and_certificates(
                    p12_data, truststore_password.encode() if truststore_password else None
                )

                ca_certs = []
                if certificate:
                    ca_certs.append(certificate.public_bytes(serialization.Encoding.PEM).decode('ascii'))
                for cert in (additional_certificates or []):
                    ca_certs.append(cert.public_bytes(serialization.Encoding.PEM).decode('ascii'))

                if ca_certs:
                    self.ssl_context.load_verify_locations(cadata='\n'.join(ca_certs))
                    logger.info(f"Loaded PKCS12 truststore: {truststore_file}")

            else:
                raise IntercomAPIError(f"Unsupported truststore type: {truststore_type}")

        except IntercomAPIError:
            raise
        except Exception as e:
            logger.error(f"Failed to load truststore {truststore_file}: {e}")
            raise IntercomAPIError(f"Truststore loading failed: {e}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(
                self.host,
                context=self.ssl_context,
                timeout=self.timeout
            )
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def request(self, method: str, path: str, body: Optional[Dict] = None) -> Dict[str, Any]:
        """
        Make HTTP request to the Intercom API.

        Args:
            method: HTTP method (GET, POST)
            path: API endpoint path (relative to base_url)
            body: Request body data, sent as JSON

        Returns:
            Parsed JSON response (empty dict for empty bodies)

        Raises:
            IntercomAuthenticationError: On HTTP 401
            IntercomAPIError: On any other HTTP error, connection error or invalid response
        """
        full_path = f"{self.base_path}/{path.lstrip('/')}"

        request_headers = dict(self.auth_headers)
        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            request_headers['Content-Type'] = 'application/json'

        try:
            conn = self._get_connection()

            logger.debug(f"Making {method} request to {self.host}{full_path}")
            conn.request(method, full_path, request_body, request_headers)

            response = conn.getresponse()
            response_data = response.read().decode('utf-8')

            logger.debug(f"Response status: {response.status} {response.reason}")
        except (ConnectionError, OSError) as e:
            self.close_connection()
            raise IntercomAPIError(f"Connection error to {self.host}: {e}")
        except HTTPException as e:
            self.close_connection()
            raise IntercomAPIError(f"Protocol error from {self.host}: {e!r}")

        try:
            parsed = json.loads(response_data) if response_data else {}
        except json.JSONDecodeError as e:
            if response.status >= 400:
                parsed = {'raw': response_data}
            else:
                raise IntercomAPIError(f"Invalid JSON response from {self.host}: {e}", response.status)

        if response.status == 401:
            raise IntercomAuthenticationError(
                f"Authentication failed for {self.host}", response.status, parsed
            )
        if response.status >= 400:
            raise IntercomAPIError(
                f"HTTP {response.status}: {response.reason} {self._error_summary(parsed)}".rstrip(),
                response.status,
                parsed
            )

        return parsed

    @staticmethod
    def _error_summary(body: Any) -> str:
        """Pull the message out of an Intercom error list, if present."""
        if isinstance(body, dict):
            errors = body.get('errors') or []
            messages = [e.get('message', '') for e in errors if isinstance(e, dict)]
            return '; '.join(m for m in messages if m)
        return ''

    def get(self, path: str) -> Dict[str, Any]:
        return self.request('GET', path)

    def post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', path, body=body)

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                logger.warning(f"Error closing connection to {self.host}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close_connection()
