"""
OAuth2 flows for the Google Workspace CLI

Builds OAuth clients for managed and local mode, runs the loopback callback
server, and drives interactive logins and relay-backed token refreshes.
"""

import base64
import hmac
import json
import logging
import secrets
import socket
import sys
import time
import urllib.error
import urllib.parse
import urllib.request
import webbrowser
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
import requests

from .common import MODE_LOCAL, MODE_MANAGED, SCOPES
from .errors import (
    CallbackError, ConfigurationError, LoginTimeoutError, RefreshError, TransportError
)

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

LOOPBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/oauth2callback"
CALLBACK_TIMEOUT = 5 * 60
SUCCESS_MESSAGE = "Authentication successful. You can close this tab."


def expiry_to_datetime(expiry_date):
    """Convert epoch milliseconds to the naive UTC datetime google-auth uses"""
    if not expiry_date:
        return None
    return datetime.fromtimestamp(expiry_date / 1000, tz=timezone.utc).replace(tzinfo=None)


def datetime_to_expiry(expiry):
    """Convert a naive UTC datetime back to epoch milliseconds"""
    if expiry is None:
        return None
    return int(expiry.replace(tzinfo=timezone.utc).timestamp() * 1000)


# ============================================================================
# CLIENT FACTORY
# ============================================================================

class OAuthClient:
    """OAuth client descriptor for one invocation.

    A single type covers both modes: local clients carry a client secret and
    exchange codes themselves, managed clients carry only the public client
    id and point their redirect at the token relay.
    """

    def __init__(self, mode, client_id, redirect_uri, client_secret=None,
                 scopes=None, auth_uri=AUTH_URI, token_uri=TOKEN_URI):
        self.mode = mode
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes or SCOPES)
        self.token_uri = token_uri

        client_config = {
            'client_id': client_id,
            'auth_uri': auth_uri,
            'token_uri': token_uri,
        }
        if client_secret:
            client_config['client_secret'] = client_secret

        # The relay performs the managed-mode exchange, so there is nowhere
        # to send a PKCE verifier from here.
        self.flow = Flow.from_client_config(
            {'installed': client_config},
            scopes=self.scopes,
            redirect_uri=redirect_uri,
            autogenerate_code_verifier=(mode == MODE_LOCAL),
        )

    def authorization_url(self, state=None):
        """Consent URL requesting offline access and forcing re-consent"""
        kwargs = {'access_type': 'offline', 'prompt': 'consent'}
        if state is not None:
            kwargs['state'] = state
        url, _ = self.flow.authorization_url(**kwargs)
        return url

    def exchange_code(self, code):
        """Exchange an authorization code at Google's token endpoint.

        Returns:
            Credential record dict
        """
        try:
            token = self.flow.fetch_token(code=code)
        except OAuth2Error as e:
            raise TransportError(f"Token exchange failed: {e.description or e.error}") from e
        except requests.RequestException as e:
            raise TransportError(f"Token exchange failed: {e}") from e

        return record_from_token_response(token, self.scopes)

    def credentials(self, record):
        """Build google-auth credentials from a credential record.

        Local-mode credentials carry the refresh token and client secret so
        google-auth refreshes them on demand. Managed-mode credentials carry
        neither; they are refreshed through the relay before use.
        """
        scope = record.get('scope')
        return Credentials(
            token=record.get('access_token'),
            refresh_token=record.get('refresh_token') if self.mode == MODE_LOCAL else None,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=scope.split() if scope else self.scopes,
            expiry=expiry_to_datetime(record.get('expiry_date')),
        )

    def refresh(self, record):
        """Refresh a local-mode record against Google's token endpoint"""
        if not record.get('refresh_token'):
            raise RefreshError("No refresh token available. Run `gw auth login` again.")

        credentials = self.credentials(record)
        try:
            credentials.refresh(Request())
        except google.auth.exceptions.RefreshError as e:
            raise RefreshError(f"Token refresh failed: {e}") from e
        except google.auth.exceptions.TransportError as e:
            raise TransportError(f"Token refresh failed: {e}") from e

        refreshed = dict(record)
        refreshed['access_token'] = credentials.token
        refreshed['expiry_date'] = datetime_to_expiry(credentials.expiry)
        if credentials.refresh_token:
            refreshed['refresh_token'] = credentials.refresh_token
        return refreshed


def record_from_token_response(token, scopes):
    """Normalise an OAuth token response into a credential record"""
    expires_at = token.get('expires_at')
    if expires_at is None:
        expires_at = time.time() + int(token.get('expires_in', 3600))

    scope = token.get('scope') or scopes
    if isinstance(scope, (list, tuple)):
        scope = ' '.join(scope)

    record = {
        'access_token': token['access_token'],
        'scope': scope,
        'token_type': token.get('token_type', 'Bearer'),
        'expiry_date': int(expires_at * 1000),
    }
    if token.get('refresh_token'):
        record['refresh_token'] = token['refresh_token']
    return record


def read_client_secrets(credentials_path):
    """Read the installed/web payload from an OAuth client secret file"""
    try:
        with open(credentials_path) as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(
            "Credentials file not found.", credentials_path=str(credentials_path)
        ) from None
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Credentials file is not valid JSON: {e}", credentials_path=str(credentials_path)
        ) from e

    payload = None
    if isinstance(data, dict):
        payload = data.get('installed') or data.get('web')

    if not isinstance(payload, dict) or not payload.get('client_id') or not payload.get('client_secret'):
        raise ConfigurationError(
            "Invalid credentials file. Expected installed/web OAuth client JSON "
            "with client_id and client_secret.",
            credentials_path=str(credentials_path),
        )
    return payload


def create_client(mode, credentials_path, callback_port, config):
    """Build an unauthenticated OAuth client for the given mode.

    Args:
        mode: "managed" or "local"
        credentials_path: Client secret file (ignored in managed mode)
        callback_port: Loopback port for the redirect, or 0 when no callback
            server will run (ignored in managed mode)
        config: Config instance

    Returns:
        OAuthClient
    """
    if mode == MODE_MANAGED:
        return OAuthClient(
            MODE_MANAGED,
            config.managed_client_id,
            redirect_uri=config.relay_url,
            scopes=config.scopes,
        )

    payload = read_client_secrets(credentials_path)
    if callback_port > 0:
        redirect_uri = f"http://{LOOPBACK_HOST}:{callback_port}{CALLBACK_PATH}"
    else:
        redirect_uri = f"http://{LOOPBACK_HOST}"

    return OAuthClient(
        MODE_LOCAL,
        payload['client_id'],
        redirect_uri=redirect_uri,
        client_secret=payload['client_secret'],
        scopes=config.scopes,
        auth_uri=payload.get('auth_uri', AUTH_URI),
        token_uri=payload.get('token_uri', TOKEN_URI),
    )


# ============================================================================
# LOOPBACK CALLBACK SERVER
# ============================================================================

def reserve_port():
    """Ask the OS for a free loopback port.

    The placeholder socket is released before CallbackServer binds the same
    port, so another process could claim it in between. That window is a few
    milliseconds inside one interactive login; losing the race surfaces as a
    TransportError from CallbackServer.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((LOOPBACK_HOST, 0))
            return sock.getsockname()[1]
    except OSError as e:
        raise TransportError(f"Could not allocate callback port: {e}") from e


class _CallbackRejected(Exception):
    """Callback that must be answered with 400 and fails the login"""

    def __init__(self, body, error):
        super().__init__(body)
        self.body = body
        self.error = error


class _CallbackHandler(BaseHTTPRequestHandler):
    # Per-connection socket timeout; an idle browser preconnect must not
    # hold up the accept loop.
    timeout = 10

    def do_GET(self):
        parsed = urllib.parse.urlparse(self.path)
        if parsed.path != CALLBACK_PATH:
            self.respond(404, "Not found")
            return

        params = {key: values[0] for key, values in urllib.parse.parse_qs(parsed.query).items()}
        self.server.owner.handle_callback(params, self.respond)

    def respond(self, status, body):
        data = body.encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'text/plain; charset=utf-8')
        self.send_header('Content-Length', str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format, *args):
        logger.debug("Callback server: " + format, *args)


class _CallbackHTTPServer(HTTPServer):
    def __init__(self, address, owner):
        self.owner = owner
        super().__init__(address, _CallbackHandler)

    def handle_error(self, request, client_address):
        logger.debug("Dropped callback connection from %s", client_address, exc_info=True)


class CallbackServer:
    """Single-use loopback listener for the OAuth redirect.

    The listener binds on construction. wait() serves requests until the
    first callback on /oauth2callback settles the login, or until the
    overall deadline passes. The outcome is a one-shot future: it is set at
    most once and every later request is ignored.

    Args:
        port: Port returned by reserve_port()
        auth_url: Authorization URL, repeated in the timeout error
        csrf_token: Expected state value. Set for managed mode, where the
            callback carries relay-exchanged tokens instead of a code.
        timeout: Seconds to wait for the callback
    """

    def __init__(self, port, auth_url, csrf_token=None, timeout=CALLBACK_TIMEOUT):
        self.port = port
        self.auth_url = auth_url
        self.csrf_token = csrf_token
        self.timeout = timeout
        self._result = Future()

        try:
            self._httpd = _CallbackHTTPServer((LOOPBACK_HOST, port), self)
        except OSError as e:
            raise TransportError(
                f"Could not start callback server on port {port}: {e}", callback_port=port
            ) from e

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._httpd.server_close()

    def wait(self):
        """Block until the callback arrives.

        Returns:
            Authorization code (local mode) or credential record (managed mode)
        """
        deadline = time.monotonic() + self.timeout
        try:
            while not self._result.done():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise LoginTimeoutError(
                        f"Authentication timed out after {_describe_timeout(self.timeout)}. "
                        f"Open this URL manually: {self.auth_url}",
                        auth_url=self.auth_url,
                    )
                self._httpd.timeout = remaining
                self._httpd.handle_request()
        finally:
            self.close()

        return self._result.result()

    def handle_callback(self, params, respond):
        """Validate one request to the callback path and settle the login"""
        if self._result.done():
            logger.debug("Ignoring callback after the login attempt settled")
            respond(400, "Login already completed.")
            return

        try:
            if self.csrf_token is None:
                result = self._extract_code(params)
            else:
                result = self._extract_tokens(params)
        except _CallbackRejected as rejected:
            respond(400, rejected.body)
            self._settle(exception=rejected.error)
            return

        respond(200, SUCCESS_MESSAGE)
        self._settle(result=result)

    def _settle(self, result=None, exception=None):
        if self._result.done():
            return
        if exception is not None:
            self._result.set_exception(exception)
        else:
            self._result.set_result(result)

    def _extract_code(self, params):
        error = params.get('error')
        if error:
            raise _CallbackRejected(
                f"OAuth error: {error}",
                CallbackError(f"OAuth error: {error}", error=error,
                              description=params.get('error_description')),
            )

        code = params.get('code')
        if not code:
            raise _CallbackRejected(
                "Missing code", CallbackError("OAuth callback missing code parameter.")
            )
        return code

    def _extract_tokens(self, params):
        state = params.get('state', '')
        if not hmac.compare_digest(state.encode('utf-8'), self.csrf_token.encode('utf-8')):
            raise _CallbackRejected(
                "State mismatch.", CallbackError("OAuth state mismatch. Possible CSRF attack.")
            )

        error = params.get('error')
        if error:
            description = params.get('error_description') or 'No details'
            raise _CallbackRejected(
                f"OAuth error: {error}",
                CallbackError(f"OAuth error: {error}. {description}", error=error),
            )

        access_token = params.get('access_token')
        expiry_date = params.get('expiry_date')
        if not access_token or not expiry_date:
            raise _CallbackRejected(
                "Missing token fields", CallbackError("OAuth callback missing token fields.")
            )

        try:
            expiry_date = int(expiry_date)
        except ValueError:
            raise _CallbackRejected(
                "Invalid expiry_date",
                CallbackError("OAuth callback expiry_date is not an integer."),
            ) from None

        record = {'access_token': access_token, 'expiry_date': expiry_date}
        for key in ('refresh_token', 'scope', 'token_type'):
            if params.get(key):
                record[key] = params[key]
        return record


def _describe_timeout(seconds):
    if seconds >= 60:
        return f"{seconds / 60:g} minutes"
    return f"{seconds:g} seconds"


# ============================================================================
# LOGIN FLOWS
# ============================================================================

@dataclass
class LoginResult:
    """Outcome of an interactive login"""

    credentials: dict
    callback_port: int
    browser_opened: bool
    auth_url: str


def encode_state(callback_uri, csrf_token):
    """Base64 state blob telling the relay where to forward tokens"""
    payload = {'uri': callback_uri, 'manual': False, 'csrf': csrf_token}
    return base64.b64encode(json.dumps(payload, separators=(',', ':')).encode('utf-8')).decode('ascii')


def launch_browser(auth_url, no_open=False):
    """Show the authorization URL and optionally open it.

    Returns:
        True if a browser was opened
    """
    print("\n" + "=" * 70, file=sys.stderr)
    print("GOOGLE WORKSPACE AUTHENTICATION", file=sys.stderr)
    print("=" * 70, file=sys.stderr)
    print(f"\nOpen this URL in your browser:\n\n  {auth_url}\n", file=sys.stderr)

    opened = False
    if not no_open:
        try:
            opened = webbrowser.open(auth_url)
        except webbrowser.Error as e:
            logger.warning("Could not open a browser: %s", e)
        if opened:
            print("(Browser opened automatically)", file=sys.stderr)

    print(f"Waiting for authentication (times out in {_describe_timeout(CALLBACK_TIMEOUT)})...",
          file=sys.stderr)
    print("=" * 70 + "\n", file=sys.stderr)
    return opened


def run_local_login(config, credentials_path, no_open=False):
    """Authorization-code flow with the CLI performing the exchange"""
    port = reserve_port()
    logger.debug("Reserved callback port %d", port)

    client = create_client(MODE_LOCAL, credentials_path, port, config)
    auth_url = client.authorization_url()

    with CallbackServer(port, auth_url) as server:
        opened = launch_browser(auth_url, no_open)
        code = server.wait()

    logger.debug("Received authorization code, exchanging")
    credentials = client.exchange_code(code)
    return LoginResult(credentials, port, opened, auth_url)


def run_managed_login(config, no_open=False):
    """Delegated flow: the relay exchanges the code and forwards tokens back"""
    port = reserve_port()
    logger.debug("Reserved callback port %d", port)

    callback_uri = f"http://{LOOPBACK_HOST}:{port}{CALLBACK_PATH}"
    csrf_token = secrets.token_hex(32)
    state = encode_state(callback_uri, csrf_token)

    client = create_client(MODE_MANAGED, None, 0, config)
    auth_url = client.authorization_url(state=state)

    with CallbackServer(port, auth_url, csrf_token=csrf_token) as server:
        opened = launch_browser(auth_url, no_open)
        credentials = server.wait()

    return LoginResult(credentials, port, opened, auth_url)


def run_browser_login(mode, config, credentials_path=None, no_open=False):
    """Run the interactive login for a mode. The caller persists the result."""
    if mode == MODE_MANAGED:
        return run_managed_login(config, no_open)
    return run_local_login(config, credentials_path, no_open)


# ============================================================================
# RELAY REFRESH
# ============================================================================

def refresh_managed_token(config, credentials):
    """Refresh a managed-mode record through the relay.

    Args:
        config: Config instance (relay URL)
        credentials: Current credential record

    Returns:
        Record with the relay's fields merged over the old ones. The stored
        refresh token is kept.
    """
    refresh_token = credentials.get('refresh_token')
    if not refresh_token:
        raise RefreshError("No refresh token available. Run `gw auth login` again.")

    url = f"{config.relay_url}/refreshToken"
    req = urllib.request.Request(
        url,
        data=json.dumps({'refresh_token': refresh_token}).encode('utf-8'),
        headers={'Content-Type': 'application/json'},
        method='POST',
    )

    try:
        with urllib.request.urlopen(req, timeout=30) as response:
            body = response.read().decode('utf-8')
    except urllib.error.HTTPError as e:
        error_body = e.read().decode('utf-8', errors='replace') if e.fp else ''
        raise RefreshError(f"Token refresh failed: {e.code} {error_body}".rstrip(),
                           status=e.code) from e
    except OSError as e:
        raise TransportError(f"Failed to connect to token relay: {e}",
                             relay_url=config.relay_url) from e

    try:
        refreshed = json.loads(body)
    except json.JSONDecodeError as e:
        raise RefreshError(f"Token relay returned invalid JSON: {e}") from e
    if not isinstance(refreshed, dict):
        raise RefreshError("Token relay returned an unexpected response.")

    logger.info("Refreshed managed token via %s", config.relay_url)
    return {**credentials, **refreshed, 'refresh_token': refresh_token}
