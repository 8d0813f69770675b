"""
Social identity resolution.

Google sign-in sends an ID token which is verified here against Google's
published signing keys; only the verified claims are used. Kakao and
Facebook sign-ins are resolved from the identity fields the client sends,
without server-side verification.
"""
import logging
from typing import Optional

import jwt

import config
from errors import Internal, UpstreamVerificationFailure, ValidationError

logger = logging.getLogger(__name__)

PROVIDERS = ("google", "kakao", "facebook")
VERIFIED_PROVIDERS = ("google",)

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

_google_jwks: Optional[jwt.PyJWKClient] = None


def _google_keys() -> jwt.PyJWKClient:
    global _google_jwks
    if _google_jwks is None:
        _google_jwks = jwt.PyJWKClient(GOOGLE_CERTS_URL)
    return _google_jwks


def verify_google_id_token(id_token: str, client_id: Optional[str] = None) -> dict:
    client_id = client_id or config.GOOGLE_CLIENT_ID
    if not client_id:
        raise Internal("Google client id is not configured")
    try:
        signing_key = _google_keys().get_signing_key_from_jwt(id_token)
        claims = jwt.decode(id_token, signing_key.key, algorithms=["RS256"], audience=client_id)
    except jwt.PyJWTError as e:
        logger.warning("Google ID token rejected: %s", e)
        raise UpstreamVerificationFailure("Google token verification failed")
    if claims.get("iss") not in GOOGLE_ISSUERS:
        raise UpstreamVerificationFailure("Google token verification failed")
    if not claims.get("sub") or not claims.get("email"):
        raise UpstreamVerificationFailure("Google token is missing identity claims")
    return {
        "social_id": claims["sub"],
        "email": claims["email"],
        "name": claims.get("name") or claims["email"].split("@")[0],
        "profile_image": claims.get("picture"),
    }


def resolve_identity(provider: str, payload) -> dict:
    """Return {social_id, email, name, profile_image} for a sign-in attempt."""
    if provider not in PROVIDERS:
        raise ValidationError("Unsupported social login provider")
    if provider in VERIFIED_PROVIDERS:
        if not payload.id_token:
            raise ValidationError("id_token is required for Google sign-in")
        return verify_google_id_token(payload.id_token)
    if not (payload.social_id and payload.email and payload.name):
        raise ValidationError("social_id, email and name are required")
    return {
        "social_id": payload.social_id,
        "email": payload.email,
        "name": payload.name,
        "profile_image": payload.profile_image,
    }
