#!/usr/bin/env python3
# Python 3.10
"""
Seq API client for the Seq Investigator MCP server.

This module provides the small slice of the Seq HTTP API that the
investigation tools consume: enumerating historical events with a filter,
waiting on the live event stream, and listing shared signals. Connections
are handed out per workspace by ``SeqConnectionFactory`` so that one server
process can serve several Seq tenants, each with its own API key.

Key Features:
- Paged event enumeration over ``api/events`` with server-side rendering
- Live event capture over the ``api/events/stream`` WebSocket endpoint
- Shared signal listing over ``api/signals``
- Cooperative cancellation through a ``threading.Event`` and an optional deadline
- Environment based configuration with per-workspace API keys

Cancellation:
- A set cancellation event raises ``SeqCancelledError``. An expired deadline or
  an HTTP timeout raises its subclass ``SeqTimeoutError``. Every other failure
  raises a ``SeqError`` subclass.

Dependencies:
- requests: For HTTP communication with Seq
- websockets: For the live event stream
- python-dotenv: For environment variable management

Usage:
    factory = SeqConnectionFactory()
    conn = factory.create("staging")
    events = list(conn.enumerate_events("@Level = 'Error'", count=50))
    signals = conn.list_signals()
"""

import json
import logging
import os
import re
import threading
import time
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlencode

import requests
from dotenv import load_dotenv
from websockets.exceptions import (
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidURI,
)
from websockets.sync.client import connect

# Load environment variables
load_dotenv()

# Constants
DEFAULT_SEQ_SERVER_URL = "http://localhost:5341"
API_KEY_HEADER = "X-Seq-ApiKey"
REQUEST_TIMEOUT = 30
PAGE_SIZE = 500
STREAM_POLL_INTERVAL = 0.25

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class SeqError(Exception):
    """Base exception for Seq operations."""
    pass


class SeqConnectionError(SeqError):
    """Exception raised when the Seq server cannot be reached."""
    pass


class SeqQueryError(SeqError):
    """Exception raised for rejected requests or unreadable Seq responses."""
    pass


class SeqCancelledError(Exception):
    """Raised when a request is cancelled through its cancellation event."""
    pass


class SeqTimeoutError(SeqCancelledError):
    """Raised when a deadline passes or a request times out."""
    pass


def _raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise SeqCancelledError("Operation cancelled")


def workspace_env_suffix(workspace: str) -> str:
    """
    Convert a workspace name into the suffix used by its environment variables.

    Args:
        workspace: Workspace name, e.g. 'eu-prod'

    Returns:
        str: Upper-cased name with non-alphanumerics replaced, e.g. 'EU_PROD'
    """
    return re.sub(r'[^A-Za-z0-9]', '_', workspace.strip()).upper()


class SeqConnection:
    """
    A connection to a single Seq server and API key.

    Attributes:
        server_url (str): Base URL of the Seq server
        api_key (str|None): API key sent with every request, if any
        timeout (float): HTTP timeout in seconds
        session (requests.Session): HTTP session for connection reuse
    """

    def __init__(self, server_url: str, api_key: Optional[str] = None, timeout: float = REQUEST_TIMEOUT):
        self.server_url = server_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers['Accept'] = 'application/json'
        if api_key:
            self.session.headers[API_KEY_HEADER] = api_key

    def _get(self, path: str, params: Dict[str, Any], cancel: Optional[threading.Event] = None) -> Any:
        """
        Issue a GET request against the Seq API and decode the JSON body.

        Args:
            path: API path relative to the server URL, e.g. 'api/events'
            params: Query string parameters
            cancel: Optional cancellation event checked before the request

        Returns:
            Decoded JSON response

        Raises:
            SeqCancelledError: If the cancellation event is set
            SeqTimeoutError: If the request times out
            SeqConnectionError: If the server is unreachable
            SeqQueryError: If the server rejects the request or returns invalid JSON
        """
        _raise_if_cancelled(cancel)
        url = f"{self.server_url}/{path}"

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.Timeout as e:
            raise SeqTimeoutError(f"Request to {url} timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            error_msg = f"Cannot connect to Seq at {self.server_url}: {e}"
            logger.error(error_msg)
            raise SeqConnectionError(error_msg) from e
        except requests.RequestException as e:
            error_msg = f"Seq request failed: {e}"
            logger.error(error_msg)
            raise SeqQueryError(error_msg) from e

        try:
            return response.json()
        except ValueError as e:
            error_msg = f"Failed to parse Seq response from {url}: {e}"
            logger.error(error_msg)
            raise SeqQueryError(error_msg) from e

    def check_health(self) -> bool:
        """
        Check if Seq is reachable.

        Returns:
            bool: True if the health endpoint answers with 200, False otherwise.
        """
        try:
            response = self.session.get(f"{self.server_url}/health", timeout=5)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"Seq health check failed: {e}")
            return False

    def enumerate_events(
        self,
        filter: Optional[str],
        count: int,
        render: bool = True,
        cancel: Optional[threading.Event] = None
    ) -> Iterator[Dict[str, Any]]:
        """
        Enumerate stored events matching a filter, newest first.

        Results are fetched in pages of at most PAGE_SIZE events, continuing
        after the id of the last event received until ``count`` events have
        been yielded or Seq runs out of matches.

        Args:
            filter: Seq filter expression, or None/empty to match everything
            count: Maximum number of events to yield
            render: Ask Seq to include the rendered message
            cancel: Optional cancellation event, checked before each page. A page
                    request already in flight is not interrupted; it runs until
                    Seq answers or the request timeout fires.

        Yields:
            dict: Event objects in the order Seq returns them

        Raises:
            SeqCancelledError: If the cancellation event is set
            SeqTimeoutError: If a request times out
            SeqError: For any other failure
        """
        remaining = count
        after_id = None

        while remaining > 0:
            page_size = min(remaining, PAGE_SIZE)
            params: Dict[str, Any] = {
                'count': page_size,
                'render': 'true' if render else 'false',
            }
            if filter:
                params['filter'] = filter
            if after_id:
                params['afterId'] = after_id

            page = self._get('api/events', params, cancel)
            if not isinstance(page, list):
                raise SeqQueryError(f"Unexpected events response: {type(page).__name__}")

            for event in page[:remaining]:
                yield event

            remaining -= len(page)
            if len(page) < page_size:
                break
            after_id = page[-1].get('Id')
            if not after_id:
                break

    def _stream_url(self, filter: Optional[str]) -> str:
        url = re.sub(r'^http', 'ws', self.server_url) + '/api/events/stream'
        if filter:
            url += '?' + urlencode({'filter': filter})
        return url

    def stream_events(
        self,
        filter: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None
    ) -> Iterator[Dict[str, Any]]:
        """
        Yield live events from Seq's event stream as they arrive.

        The stream is unbounded; it ends only when the server closes it, the
        cancellation event is set, or ``deadline`` (a ``time.monotonic()``
        value) passes. Callers stop early by closing the generator.

        Args:
            filter: Optional Seq filter expression applied server-side
            cancel: Optional cancellation event
            deadline: Optional monotonic deadline for the whole wait

        Yields:
            dict: Event objects in arrival order

        Raises:
            SeqCancelledError: When the cancellation event is set
            SeqTimeoutError: When the deadline passes
            SeqConnectionError: If the stream cannot be opened or drops
        """
        _raise_if_cancelled(cancel)
        url = self._stream_url(filter)
        headers = {API_KEY_HEADER: self.api_key} if self.api_key else None

        open_timeout = self.timeout
        if deadline is not None:
            open_timeout = max(min(open_timeout, deadline - time.monotonic()), 0.01)

        try:
            websocket = connect(url, additional_headers=headers, open_timeout=open_timeout)
        except TimeoutError as e:
            raise SeqTimeoutError(f"Opening event stream timed out after {open_timeout:.1f}s") from e
        except (OSError, InvalidURI, InvalidHandshake) as e:
            error_msg = f"Cannot open Seq event stream at {url}: {e}"
            logger.error(error_msg)
            raise SeqConnectionError(error_msg) from e

        with websocket:
            while True:
                _raise_if_cancelled(cancel)

                wait = STREAM_POLL_INTERVAL
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise SeqTimeoutError("Live event wait timed out")
                    wait = min(wait, remaining)

                try:
                    message = websocket.recv(timeout=wait)
                except TimeoutError:
                    continue
                except ConnectionClosedOK:
                    return
                except ConnectionClosedError as e:
                    error_msg = f"Seq event stream closed unexpectedly: {e}"
                    logger.error(error_msg)
                    raise SeqConnectionError(error_msg) from e

                try:
                    event = json.loads(message)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping malformed stream message: {str(message)[:100]}... Error: {e}")
                    continue

                yield event

    def list_signals(
        self,
        shared: bool = True,
        cancel: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        List saved signals.

        Args:
            shared: Only return shared signals (never per-user ones)
            cancel: Optional cancellation event

        Returns:
            List[dict]: Signal objects as returned by Seq
        """
        signals = self._get('api/signals', {'shared': 'true' if shared else 'false'}, cancel)
        if not isinstance(signals, list):
            raise SeqQueryError(f"Unexpected signals response: {type(signals).__name__}")
        return signals

    def close(self) -> None:
        self.session.close()

    def __del__(self):
        """Clean up resources when the connection is destroyed."""
        if hasattr(self, 'session'):
            self.session.close()


class SeqConnectionFactory:
    """
    Hands out one cached ``SeqConnection`` per workspace.

    The default workspace uses SEQ_SERVER_URL and SEQ_API_KEY. A named
    workspace reads SEQ_API_KEY_<NAME> and, optionally, SEQ_SERVER_URL_<NAME>,
    where <NAME> is the workspace name passed through ``workspace_env_suffix``.
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the factory.

        Args:
            server_url: Seq server URL. If None, reads SEQ_SERVER_URL or uses default.
            api_key: API key for the default workspace. If None, reads SEQ_API_KEY.
            timeout: HTTP timeout in seconds. If None, reads SEQ_REQUEST_TIMEOUT.
        """
        self.server_url = server_url or os.getenv('SEQ_SERVER_URL', DEFAULT_SEQ_SERVER_URL)
        self.api_key = api_key or os.getenv('SEQ_API_KEY') or None
        self.timeout = timeout or float(os.getenv('SEQ_REQUEST_TIMEOUT', REQUEST_TIMEOUT))

        self._connections: Dict[Optional[str], SeqConnection] = {}
        self._lock = threading.Lock()

    def create(self, workspace: Optional[str] = None) -> SeqConnection:
        """
        Get the connection for a workspace, creating it on first use.

        Args:
            workspace: Workspace name, or None/blank for the default workspace

        Returns:
            SeqConnection: Ready-to-use connection

        Raises:
            SeqError: If the workspace is not configured
        """
        key = workspace.strip() if workspace and workspace.strip() else None

        with self._lock:
            connection = self._connections.get(key)
            if connection is None:
                connection = self._build_connection(key)
                self._connections[key] = connection
            return connection

    def _build_connection(self, workspace: Optional[str]) -> SeqConnection:
        if workspace is None:
            return SeqConnection(self.server_url, self.api_key, self.timeout)

        suffix = workspace_env_suffix(workspace)
        api_key = os.getenv(f'SEQ_API_KEY_{suffix}')
        server_url = os.getenv(f'SEQ_SERVER_URL_{suffix}')

        if not api_key and not server_url:
            raise SeqError(
                f"Unknown workspace '{workspace}'. "
                f"Set SEQ_API_KEY_{suffix} (and optionally SEQ_SERVER_URL_{suffix}) "
                "in your MCP configuration."
            )

        logger.info(f"Creating Seq connection for workspace '{workspace}'")
        return SeqConnection(server_url or self.server_url, api_key, self.timeout)
