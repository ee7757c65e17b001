"""
Token persistence for the Google Workspace CLI

A single credential record lives on disk, tagged with the auth mode it was
acquired under so later invocations route through the matching flow.
"""

import json
import logging
import os
import stat
from dataclasses import dataclass

from .common import MODE_LOCAL, MODE_MANAGED
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class SavedToken:
    """Credential record plus the mode it belongs to.

    Attributes:
        mode: "managed" or "local"
        credentials: Dict with access_token, refresh_token, scope, token_type
            and expiry_date (epoch milliseconds)
    """

    mode: str
    credentials: dict

    def to_dict(self):
        return {'mode': self.mode, 'credentials': self.credentials}


class TokenStore:
    """File-backed store for one saved token.

    Writes are full overwrites with no locking; concurrent invocations
    racing on the same file resolve as last writer wins.
    """

    def __init__(self, path):
        self.path = path

    def load(self):
        """Load the saved token. Returns None if no token file exists.

        Malformed JSON raises ConfigurationError; the file is left in place.
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path) as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Token file is not valid JSON: {e}. Fix it or run `gw auth logout`.",
                token_path=str(self.path),
            ) from e

        if isinstance(raw, dict) and isinstance(raw.get('credentials'), dict):
            # Envelopes written by older releases use "authMode"
            mode = raw.get('mode', raw.get('authMode'))
            return SavedToken(
                mode=MODE_LOCAL if mode == MODE_LOCAL else MODE_MANAGED,
                credentials=raw['credentials'],
            )

        # Legacy bare-credential file
        logger.debug("Read legacy token file %s as local mode", self.path)
        return SavedToken(mode=MODE_LOCAL, credentials=raw)

    def save(self, mode, credentials):
        """Write the tagged envelope, replacing any existing file"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = SavedToken(mode=mode, credentials=credentials).to_dict()
        self.path.write_text(json.dumps(payload, indent=2) + "\n")
        os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)
        logger.info("Saved %s token to %s", mode, self.path)

    def clear(self):
        """Delete the token file. Returns True if a file was removed."""
        if self.path.exists():
            self.path.unlink()
            logger.info("Deleted token file %s", self.path)
            return True
        return False
