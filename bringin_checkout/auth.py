import os

from fastapi import Header, HTTPException
from jose import JWTError, jwt

import bringin_checkout.config  # noqa: F401  loads .env


def verify_token(authorization: str = Header(...)):
    secret = os.getenv("JWT_SECRET")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer" or not secret:
            raise ValueError("unsupported scheme")
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
