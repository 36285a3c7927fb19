"""Control surface dependency; overridden in tests."""

from batch_import.services.batch_control import BatchControl
from batch_import.services.factory import get_batch_control


def get_control() -> BatchControl:
    return get_batch_control()
