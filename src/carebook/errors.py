from typing import Any, Dict, Optional


class CareBookError(Exception):
    """Basisklasse aller fachlichen Fehler; trägt Code und Details für die UI-Schicht."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class ValidationError(CareBookError):
    """Ungültige Eingabe; wird vor jedem Schreibvorgang geworfen."""


class InvalidTransitionError(ValidationError):
    def __init__(self, session_id, current, requested):
        super().__init__(
            f"Session {session_id}: transition {current.value} -> {requested.value} not allowed",
            details={"session_id": session_id, "current": current.value, "requested": requested.value},
        )


class NotFoundError(CareBookError):
    def __init__(self, kind: str, ident):
        super().__init__(f"{kind} {ident} not found", details={"kind": kind, "id": ident})


class ConflictError(CareBookError):
    """Überschneidung mit Sperrzeit oder doppeltes Vorkommen."""


class NotBillableError(CareBookError):
    def __init__(self, session_id, reason: str):
        self.session_id = session_id
        super().__init__(
            f"Session {session_id} is not billable: {reason}",
            details={"session_id": session_id, "reason": reason},
        )


class AlreadyPaidError(CareBookError):
    def __init__(self, session_id, payment_id=None):
        self.session_id = session_id
        self.payment_id = payment_id
        super().__init__(
            f"Session {session_id} already belongs to payment {payment_id}",
            details={"session_id": session_id, "payment_id": payment_id},
        )


class TimezoneOffsetMissingError(CareBookError):
    def __init__(self, message: str = "A UTC offset is required for this write"):
        super().__init__(message)
