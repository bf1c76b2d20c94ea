from typing import Any, Dict

from jose import jwt

from atelier.core.config import settings


def decode_access_token(token: str) -> Dict[str, Any]:
    options = {"require_sub": True, "require_exp": True}
    if not settings.JWT_AUDIENCE:
        options["verify_aud"] = False
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE or None,
        options=options,
    )


def identity_from_claims(payload: Dict[str, Any]) -> Dict[str, Any]:
    metadata = payload.get("user_metadata") or {}
    return {
        "_id": str(payload["sub"]),
        "email": payload.get("email"),
        "full_name": metadata.get("full_name") or payload.get("name"),
    }
