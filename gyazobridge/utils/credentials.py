"""Secure credential storage using system keyring."""

import logging

import keyring
import keyring.errors

logger = logging.getLogger(__name__)

# Keyring service name for gyazobridge
SERVICE_NAME = "gyazobridge"
ACCESS_TOKEN_KEY = "gyazo:access_token"


class CredentialStore:
    """Manages secure storage of the Gyazo access token using system keyring."""

    def __init__(self, service_name: str = SERVICE_NAME):
        """
        Initialize credential store.

        Args:
            service_name: Name of the service in keyring (default: "gyazobridge")
        """
        self.service_name = service_name

    def set_access_token(self, token: str) -> None:
        """
        Store the Gyazo access token in system keyring.

        Raises:
            keyring.errors.PasswordSetError: If the token cannot be stored
        """
        try:
            keyring.set_password(self.service_name, ACCESS_TOKEN_KEY, token)
            logger.info("Stored Gyazo access token in system keyring")
        except Exception as e:
            logger.error(f"Failed to store Gyazo access token: {e}")
            raise

    def get_access_token(self) -> str | None:
        """
        Retrieve the Gyazo access token from system keyring.

        Returns:
            Token if found, None otherwise
        """
        try:
            token = keyring.get_password(self.service_name, ACCESS_TOKEN_KEY)
            if token:
                logger.debug("Retrieved Gyazo access token from keyring")
            else:
                logger.debug("No Gyazo access token found in keyring")
            return token
        except Exception as e:
            logger.debug(f"Failed to retrieve Gyazo access token: {e}")
            return None

    def delete_access_token(self) -> bool:
        """
        Delete the Gyazo access token from system keyring.

        Returns:
            True if deleted, False if not found or error
        """
        try:
            keyring.delete_password(self.service_name, ACCESS_TOKEN_KEY)
            logger.info("Deleted Gyazo access token from keyring")
            return True
        except keyring.errors.PasswordDeleteError:
            logger.warning("No Gyazo access token found to delete")
            return False
        except Exception as e:
            logger.error(f"Failed to delete Gyazo access token: {e}")
            return False

    def has_access_token(self) -> bool:
        """Check whether a token is stored in the keyring."""
        return self.get_access_token() is not None
