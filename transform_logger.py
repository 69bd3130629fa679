from datetime import datetime


class TransformLogger:
    """
    Append-only log sink. Messages are printed and, once ``start`` has
    opened a file, also appended to it.
    """

    def __init__(self, echo=True):
        """
        Args:
            echo (bool): print every message to stdout
        """
        self.echo = echo
        self.path = None
        self._file = None

    @property
    def enabled(self):
        return self._file is not None

    def start(self, path):
        """Open ``path`` for appending and write the start banner."""
        if self._file is not None:
            self.close()
        self._file = open(path, "a", encoding="utf-8")
        self.path = path
        self.log(f"=== LOG STARTED {datetime.now().isoformat(timespec='seconds')} ===")
        return self

    def log(self, message):
        if self.echo:
            print(message)
        if self._file is not None:
            self._file.write(message + "\n")
            self._file.flush()

    def close(self):
        if self._file is None:
            return
        self.log(f"=== LOG FINISHED {datetime.now().isoformat(timespec='seconds')} ===")
        self._file.close()
        self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
