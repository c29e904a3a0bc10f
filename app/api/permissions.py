from app.core.exceptions import PermissionDeniedError
from app.core.statuses import TokenStatus, is_active
from app.db.models import QueueToken
from app.schemas.actor import Actor

# Statuses from which an owner may cancel their own token
OWNER_CANCELLABLE = frozenset({TokenStatus.WAITING, TokenStatus.CALLED})

def can_view_token(actor: Actor, token: QueueToken) -> bool:
    return actor.is_staff or token.user_id == actor.user_id

def authorize_transition(actor: Actor, token: QueueToken, target: TokenStatus) -> None:
    """
    Decide whether ``actor`` may ask for ``target``. Staff and admins may
    request any status; owners may only cancel a waiting or called token.
    Whether the move itself is legal is left to ``TokenLifecycle``.
    """
    if actor.is_staff:
        return
    if token.user_id != actor.user_id:
        raise PermissionDeniedError("You can only change your own tokens")
    if TokenStatus(target) is not TokenStatus.CANCELLED:
        raise PermissionDeniedError("Only staff can change a token to this status")
    # Terminal tokens fall through so the state machine reports the illegal move
    if is_active(token.status) and TokenStatus(token.status) not in OWNER_CANCELLABLE:
        raise PermissionDeniedError("Token cannot be cancelled in its current status")
