"""
Authentication module: certificate, client-secret and device-code flows.
Uses MSAL for token acquisition against the Microsoft identity platform.
The report pipeline only ever sees the resulting access token.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import AuthConfig, REQUIRED_PERMISSIONS

logger = logging.getLogger("sp_usage_report.auth")

# Default scopes for app-only auth
APP_SCOPES = ["https://graph.microsoft.com/.default"]

CERT_PASSWORD_ENV = "SP_REPORT_CERT_PASSWORD"
CLIENT_SECRET_ENV = "SP_REPORT_CLIENT_SECRET"


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


@dataclass
class LoadedCertificate:
    private_key_pem: str
    thumbprint: str


def load_certificate(cert_path: str, password: str) -> LoadedCertificate:
    """Read a base64-encoded PFX and return its PEM key and SHA-1 thumbprint."""
    try:
        with open(cert_path, "r") as f:
            cert_bytes = base64.b64decode(f.read().strip())
        password_bytes = password.encode("utf-8") if password else None
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            cert_bytes, password_bytes
        )
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {cert_path}")
    except ValueError as e:
        raise AuthenticationError(f"Failed to load certificate: {e}")

    if private_key is None or certificate is None:
        raise AuthenticationError(f"PFX has no private key or certificate: {cert_path}")

    private_key_pem = private_key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("utf-8")
    thumbprint = certificate.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")
    return LoadedCertificate(private_key_pem=private_key_pem, thumbprint=thumbprint)


def _token_or_raise(result: dict, flow: str) -> str:
    if "access_token" in result:
        logger.info(f"{flow} authentication successful.")
        return result["access_token"]
    error = result.get("error_description", result.get("error", "Unknown"))
    raise AuthenticationError(f"{flow} auth failed: {error}")


class Authenticator:
    """
    Handles MSAL-based authentication for Microsoft Graph.
    Supports:
      - Certificate-based app-only authentication
      - Client-secret app-only authentication
      - Delegated authentication (device code flow)
    """

    def __init__(self, config: AuthConfig):
        self.config = config

    async def acquire_token(self) -> str:
        """Acquire an access token based on configured auth mode."""
        if self.config.mode == "certificate":
            return self._acquire_certificate_token()
        elif self.config.mode == "secret":
            return self._acquire_secret_token()
        elif self.config.mode == "delegated":
            return self._acquire_delegated_token()
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

    def _acquire_certificate_token(self) -> str:
        """Acquire token using certificate-based client credentials."""
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        logger.info("Authenticating with certificate-based app credentials...")

        password = cert_config.certificate_password or os.environ.get(CERT_PASSWORD_ENV, "")
        if not password:
            password = getpass.getpass("Enter the certificate password: ")
        cert = load_certificate(cert_config.certificate_path, password)

        app = msal.ConfidentialClientApplication(
            client_id=cert_config.client_id,
            authority=f"https://login.microsoftonline.com/{cert_config.tenant_id}",
            client_credential={
                "thumbprint": cert.thumbprint,
                "private_key": cert.private_key_pem,
            },
        )
        return _token_or_raise(app.acquire_token_for_client(scopes=APP_SCOPES), "Certificate")

    def _acquire_secret_token(self) -> str:
        """Acquire token using a client secret."""
        secret_config = self.config.secret
        if not secret_config:
            raise AuthenticationError("Client secret auth config not provided.")

        logger.info("Authenticating with client secret...")

        secret = secret_config.client_secret or os.environ.get(CLIENT_SECRET_ENV, "")
        if not secret:
            secret = getpass.getpass("Enter the client secret: ")

        app = msal.ConfidentialClientApplication(
            client_id=secret_config.client_id,
            authority=f"https://login.microsoftonline.com/{secret_config.tenant_id}",
            client_credential=secret,
        )
        return _token_or_raise(app.acquire_token_for_client(scopes=APP_SCOPES), "Client secret")

    def _acquire_delegated_token(self) -> str:
        """Acquire token using delegated (device code) flow."""
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        logger.info("Initiating device code authentication flow...")

        app = msal.PublicClientApplication(
            client_id=deleg_config.client_id,
            authority=f"https://login.microsoftonline.com/{deleg_config.tenant_id}",
        )

        flow = app.initiate_device_flow(scopes=deleg_config.scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        return _token_or_raise(app.acquire_token_by_device_flow(flow), "Delegated")

    @staticmethod
    def list_required_permissions() -> dict[str, str]:
        """Return the map of required Graph API permissions."""
        return REQUIRED_PERMISSIONS
