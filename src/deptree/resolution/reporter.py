from typing import Optional


class ResolutionReporter:
    """
    hooks invoked while a resolution runs. every hook is a no-op here;
    subclass and override the ones you care about.
    """

    def starting(self, name: str, version: str):
        pass

    def fetching(self, name: str):
        pass

    def fetched(self, name: str, version_count: int):
        pass

    def failed(self, name: str, error):
        pass

    def retrying(self, name: str, attempt: int, delay: float):
        pass

    def selected(self, name: str, requested: str, version: Optional[str]):
        """called once per distinct (name, requested) pair; version is None when nothing matched."""
        pass

    def ending(self, result):
        pass
