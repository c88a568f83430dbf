"""Share links, grants and access policy for documents."""

from .errors import (
    DocumentNotFound,
    InvalidSharePassword,
    NotAuthorizedError,
    NotPasswordProtected,
    PasswordRequired,
    SessionRequired,
    ShareAccessError,
    ShareConflict,
    ShareIntegrityError,
    ShareLinkExhausted,
    ShareLinkExpired,
    ShareLinkThrottled,
)
from .model import (
    ANONYMOUS,
    FULL_ACCESS,
    NO_ACCESS,
    Action,
    Document,
    Grant,
    GrantSource,
    LinkDisabled,
    PasswordLink,
    PermissionSet,
    PublicLink,
    RequesterIdentity,
    ShareSettings,
)
from .policy import LinkPresentation, authorize, resolve
from .repository import InMemoryDocumentShareRepository
from .service import GrantResult, Redemption, ShareLinkResult, ShareService
from .tokens import generate_share_token, hash_token, issue_share_token
