import logging
import os
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, redirect, request

from playbridge.crosscutting.config import Settings, get_settings
from playbridge.domain.errors import AuthError
from playbridge.infrastructure.auth import TokenManager

SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><title>Spotify connected</title></head>
<body style="font-family: sans-serif; text-align: center; margin-top: 4em;">
<h1>Spotify authorization complete</h1>
<p>You can close this window and return to your session.</p>
</body>
</html>"""


class HTTPServer:
    """HTTP server for PlayBridge with health checks and OAuth callbacks."""

    def __init__(self, settings: Optional[Settings] = None,
                 host: str = '127.0.0.1', port: int = 5384, debug: bool = False,
                 token_manager: Optional[TokenManager] = None):
        self.settings = settings or get_settings()
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)
        self.tokens = token_manager or TokenManager(self.settings)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self._setup_routes()

    def _setup_routes(self) -> None:

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'token_present': os.path.exists(self.tokens.token_path),
            }), 200

        @self.app.route('/callback', methods=['GET'])
        def oauth_callback():
            """OAuth callback endpoint for Spotify."""
            code = request.args.get('code')
            error = request.args.get('error')

            if error:
                self.logger.error(f"OAuth error: {error}")
                return jsonify({
                    'error': 'OAuth authorization failed',
                    'details': error
                }), 400

            if not code:
                return jsonify({
                    'error': 'Missing authorization code'
                }), 400

            self.logger.info(f"Received OAuth code: {code[:6]}...")

            try:
                self.tokens.exchange_code(code)
            except AuthError as e:
                self.logger.error(f"OAuth callback error: {e}")
                return jsonify({
                    'error': 'Failed to exchange code for tokens',
                    'details': str(e)
                }), 502

            return SUCCESS_PAGE, 200, {'Content-Type': 'text/html; charset=utf-8'}

        @self.app.route('/auth/spotify', methods=['GET'])
        def spotify_auth():
            """Initiate Spotify OAuth flow."""
            auth_url = self.tokens.get_authorize_url(state=request.args.get('state'))
            if request.args.get('redirect') in ('1', 'true'):
                return redirect(auth_url)
            return jsonify({
                'auth_url': auth_url,
                'redirect_uri': self.settings.redirect_uri
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'PlayBridge HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'spotify_auth': '/auth/spotify',
                    'oauth_callback': '/callback'
                }
            }), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting PlayBridge HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(settings: Optional[Settings] = None,
               token_manager: Optional[TokenManager] = None) -> Flask:
    """Create Flask app for testing."""
    server = HTTPServer(settings, token_manager=token_manager)
    return server.app
