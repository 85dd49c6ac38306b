from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt


def verify_operator_token(request: Request, authorization: str = Header(None)):
    """Guard for operator endpoints; open when no DEBUG_JWT_SECRET is configured."""
    secret = request.app.state.settings.debug_jwt_secret
    if not secret:
        return None
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError("not a bearer token")
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
