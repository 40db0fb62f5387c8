"""
Bearer token verification and signed download tokens.

Supports:
- JWT bearer tokens for API access (`sub` = user id)
- Short-lived download tokens that stand in for presigned URLs on WebDAV
- FastAPI dependencies resolving the request principal
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from urllib.parse import urlencode

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

DOWNLOAD_TOKEN_TYPE = "blob"

bearer_scheme = HTTPBearer(auto_error=False)


class JWTManager:
    """Manages JWT token generation and validation for API access."""

    def __init__(self, secret: str, expiry_days: int = 7, algorithm: str = "HS256"):
        self.secret = secret
        self.expiry_days = expiry_days
        self.algorithm = algorithm

    def create_token(self, user_id: str, token_jti: Optional[str] = None) -> str:
        """Generate a new JWT token for API access."""
        payload = {
            'sub': user_id,
            'iat': datetime.now(timezone.utc),
            'exp': datetime.now(timezone.utc) + timedelta(days=self.expiry_days),
        }
        if token_jti:
            payload['jti'] = token_jti

        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify and decode an API token. Download tokens are rejected."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug("JWT verification failed: %s", e)
            return None
        if payload.get('typ') == DOWNLOAD_TOKEN_TYPE:
            logger.debug("Download token presented as bearer credential")
            return None
        return payload

    def create_download_token(self, key: str, ttl_seconds: int) -> str:
        payload = {
            'key': key,
            'typ': DOWNLOAD_TOKEN_TYPE,
            'exp': datetime.now(timezone.utc) + timedelta(seconds=int(ttl_seconds)),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify_download_token(self, token: str) -> Optional[str]:
        """Return the blob key a download token grants, or None."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug("Download token verification failed: %s", e)
            return None
        if payload.get('typ') != DOWNLOAD_TOKEN_TYPE or not payload.get('key'):
            return None
        return str(payload['key'])


class DownloadUrlSigner:
    """Builds `{base}/api/blobs/download?token=...` URLs for the WebDAV proxy."""

    def __init__(self, jwt_manager: JWTManager, public_base_url: str):
        self.jwt_manager = jwt_manager
        self.public_base_url = public_base_url.rstrip('/')

    def __call__(self, key: str, ttl_seconds: int) -> str:
        token = self.jwt_manager.create_download_token(key, ttl_seconds)
        return f"{self.public_base_url}/api/blobs/download?{urlencode({'token': token})}"


def _verify(request: Request, credentials: HTTPAuthorizationCredentials) -> str:
    jwt_manager: Optional[JWTManager] = getattr(request.app.state, 'jwt_manager', None)
    if jwt_manager is None:
        logger.error("Bearer token presented but JWT_SECRET is not configured")
        raise Forbidden("Invalid or expired token")
    payload = jwt_manager.verify_token(credentials.credentials)
    if not payload or not payload.get('sub'):
        raise Forbidden("Invalid or expired token")
    return str(payload['sub'])


def require_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Resolve the calling user id. Missing credential is 401, a bad one 403."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Missing bearer token")
    return _verify(request, credentials)


def optional_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """Like `require_principal`, but anonymous callers resolve to None."""
    if credentials is None or not credentials.credentials:
        return None
    return _verify(request, credentials)
