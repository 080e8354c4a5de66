from fastapi import Header, HTTPException
from jose import JWTError, jwt

from digital_store import config


def verify_admin_token(authorization: str = Header(None)):
    if not authorization or not config.JWT_SECRET:
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    if claims.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return claims
