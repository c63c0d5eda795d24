from __future__ import annotations
"""Domain error taxonomy.

Every class is a werkzeug HTTPException so the unified error handler in
``create_app`` renders it with the standard ``{'error': {...}}`` shape. The
``kind`` attribute is a stable machine-readable tag; ``extra()`` adds any
context the caller needs (never other actors' data).
"""
from typing import Any, Dict, Optional
from werkzeug.exceptions import BadRequest, Conflict, Forbidden, ServiceUnavailable


class PermissionDenied(Forbidden):
    kind = 'denied'

    def __init__(self, resource: str, action: str):
        self.resource = resource
        self.action = action
        super().__init__(description=f'Missing permission {resource}:{action}')

    def extra(self) -> Dict[str, Any]:
        return {'resource': self.resource, 'action': self.action}


class ScopeViolation(Forbidden):
    kind = 'scope_violation'

    def __init__(self, resource: Optional[str] = None, record_id: Any = None):
        self.resource = resource
        self.record_id = record_id
        super().__init__(description='Not allowed for this record')

    def extra(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.resource:
            out['resource'] = self.resource
        if self.record_id is not None:
            out['record_id'] = self.record_id
        return out


class InvalidTransition(BadRequest):
    kind = 'invalid_transition'

    def __init__(self, current: str, target: str, field_name: str = 'status'):
        self.current = current
        self.target = target
        super().__init__(description=f'Invalid {field_name} transition {current} -> {target}')

    def extra(self) -> Dict[str, Any]:
        return {'from': self.current, 'to': self.target}


class TerminalStateViolation(Conflict):
    kind = 'terminal_state'

    def __init__(self, status: str, attempted: Optional[str] = None):
        self.status = status
        self.attempted = attempted
        super().__init__(description=f'Order is in final status {status} and cannot be modified')

    def extra(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {'status': self.status}
        if self.attempted:
            out['attempted'] = self.attempted
        return out


class ConcurrentModification(Conflict):
    kind = 'concurrent_modification'

    def __init__(self, record_id: Any):
        self.record_id = record_id
        super().__init__(description='Record changed concurrently, reload and retry')

    def extra(self) -> Dict[str, Any]:
        return {'record_id': self.record_id}


class TransientStoreError(ServiceUnavailable):
    kind = 'transient_store'

    def __init__(self, description: str = 'Data store temporarily unavailable'):
        super().__init__(description=description)

    def extra(self) -> Dict[str, Any]:
        return {'retryable': True}


__all__ = [
    'PermissionDenied', 'ScopeViolation', 'InvalidTransition', 'TerminalStateViolation',
    'ConcurrentModification', 'TransientStoreError',
]
