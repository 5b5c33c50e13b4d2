import threading


class CancellationSignal:
    """Señal de cancelación cooperativa (se consulta en cada iteración y durante los backoffs)."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Duerme hasta `seconds` o hasta que se cancele. Devuelve True si se canceló."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)
