"""
buildbooks/engine/errors.py

Typed errors raised by the financial document engine.

Every error carries a machine-readable ``code`` so the HTTP layer can map it
to a response without parsing messages:

- ValidationError          -> 400 (malformed or missing input, never retried)
- NotFound                 -> 404 (referenced record absent, no partial writes)
- InvalidTransition        -> 409 (illegal status change, document untouched)
- ArithmeticInconsistency  -> logged only; recomputed values win
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(EngineError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class NotFound(EngineError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: object = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(EngineError):
    code = "INVALID_TRANSITION"

    def __init__(self, kind: str, current: str | None, requested: str):
        super().__init__(f"{kind} cannot move from '{current}' to '{requested}'")
        self.kind = kind
        self.current = current
        self.requested = requested

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"current": self.current, "requested": self.requested})
        return data


class ArithmeticInconsistency(EngineError):
    """Stored derived amount disagrees with the recomputed one."""

    code = "ARITHMETIC_INCONSISTENCY"

    def __init__(self, label: str, stored, recomputed):
        super().__init__(f"{label}: stored {stored} != recomputed {recomputed}")
        self.label = label
        self.stored = stored
        self.recomputed = recomputed
