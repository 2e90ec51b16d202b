from fastapi import HTTPException, Depends, status
from postpilot.models import User, ROLE_ADMIN
from postpilot.security.auth import require_user

def require_role(*roles: str):
    """Dependency factory that admits only users holding one of `roles`."""
    def _dependency(user: User = Depends(require_user)) -> User:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "Insufficient permissions", "required_roles": list(roles)},
            )
        return user
    return _dependency

require_admin = require_role(ROLE_ADMIN)
