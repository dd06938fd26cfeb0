import logging

logger = logging.getLogger(__name__)

WS_NAMESPACE = '/ws'


def session_room(code: str) -> str:
    return f"session:{code.upper()}"


class SessionNotifier:
    """Fans session events out to Socket.IO rooms.

    Delivery is best-effort: nothing is acknowledged or replayed, and a
    failed emit is logged rather than propagated into game logic.
    """

    def __init__(self, socketio, namespace: str = WS_NAMESPACE):
        self.socketio = socketio
        self.namespace = namespace

    def to_session(self, code: str, event: str, payload: dict, skip_sid=None) -> None:
        try:
            self.socketio.emit(event, payload, to=session_room(code), namespace=self.namespace, skip_sid=skip_sid)
        except Exception:
            logger.exception(f"[emit-failed] session={code} event={event}")

    def to_socket(self, sid, event: str, payload: dict) -> None:
        if not sid:
            return
        try:
            self.socketio.emit(event, payload, to=sid, namespace=self.namespace)
        except Exception:
            logger.exception(f"[emit-failed] sid={sid} event={event}")

    def close_session(self, code: str) -> None:
        try:
            self.socketio.close_room(session_room(code), namespace=self.namespace)
        except Exception:
            logger.exception(f"[close-room-failed] session={code}")
