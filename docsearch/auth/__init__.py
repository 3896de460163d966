from docsearch.auth.token import TokenPayload, get_current_user, issue_token, verify_token
from docsearch.auth.dependencies import (
    CurrentUser,
    Repository,
    Search,
    Uploads,
)

__all__ = [
    "TokenPayload", "get_current_user", "issue_token", "verify_token",
    "CurrentUser", "Repository", "Search", "Uploads",
]
