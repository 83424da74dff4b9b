"""File-backed persistence of the Netatmo refresh token.

The file holds the raw refresh token as plain text. A missing file means the
bridge has not been authorized yet; deleting it forces re-authorization.
"""

import logging
import pathlib

from netatmo_homie_bridge.exceptions import TokenStorageError


class RefreshTokenStore:
    """Single-value store for the refresh token.

    Attributes:
        token_file: Path of the plain-text token file.
        logger: Logger for storage events.
    """

    def __init__(self, token_file: pathlib.Path, logger: logging.Logger) -> None:
        self.token_file = pathlib.Path(token_file)
        self.logger = logger

    def load(self) -> str | None:
        """Load the refresh token.

        Returns:
            The stored refresh token, or None if there is none or it is unreadable.
        """
        if not self.token_file.exists():
            self.logger.debug("No token file found at %s", self.token_file)
            return None

        try:
            token = self.token_file.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning("Could not read token file %s, will need re-authorization: %s", self.token_file, e)
            return None

        if not token:
            self.logger.warning("Token file %s is empty, will need re-authorization", self.token_file)
            return None
        self.logger.debug("Refresh token loaded from %s", self.token_file)
        return token

    def save(self, refresh_token: str) -> None:
        """Overwrite the stored refresh token.

        The token is written to a sibling temp file first and then moved in place,
        so a crash never leaves a half-written token behind.

        Raises:
            TokenStorageError: If the token cannot be written.
        """
        tmp_file = self.token_file.with_name(self.token_file.name + ".tmp")
        try:
            self.token_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(refresh_token, encoding="utf-8")
            tmp_file.chmod(0o600)
            tmp_file.replace(self.token_file)
        except OSError as e:
            self.logger.error("Failed to save refresh token to %s: %s", self.token_file, e)
            raise TokenStorageError(f"Failed to save refresh token: {e}") from e
        self.logger.info("Refresh token saved to %s", self.token_file)

    def delete(self) -> bool:
        """Delete the stored refresh token.

        Returns:
            True if a token file was deleted, False if there was none.

        Raises:
            TokenStorageError: If the file exists but cannot be removed.
        """
        try:
            self.token_file.unlink()
        except FileNotFoundError:
            self.logger.debug("Token file does not exist: %s", self.token_file)
            return False
        except OSError as e:
            self.logger.error("Failed to delete token file %s: %s", self.token_file, e)
            raise TokenStorageError(f"Failed to delete token file: {e}") from e
        self.logger.info("Token file deleted: %s", self.token_file)
        return True
