# latidos/core/exceptions.py
from typing import Optional


class PersistenceError(Exception):
    """Fallo del almacenamiento (conexión perdida, violación de restricción)"""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original
