from core.config import Settings, get_settings
from core.errors import (ConflictOnReorder, CycleDetected, DocGateError,
                         Forbidden, InvalidTransition, NotFound,
                         TransitionDenied, Unauthenticated, UnknownCapability,
                         ValidationError,)

__all__ = ['ConflictOnReorder', 'CycleDetected', 'DocGateError', 'Forbidden',
           'InvalidTransition', 'NotFound', 'Settings', 'TransitionDenied',
           'Unauthenticated', 'UnknownCapability', 'ValidationError',
           'get_settings']
