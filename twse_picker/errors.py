"""
Exceptions raised by the picker's data sources.
"""


class SourceError(Exception):
    """A data source returned nothing usable (no result, malformed payload)."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")
