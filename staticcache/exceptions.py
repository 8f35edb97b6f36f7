"""
Cache error taxonomy.

None of these ever reach the viewer: the cache degrades to "as if no cache
existed" instead of breaking a page.
"""


class StaticCacheError(Exception):
    """Base class for page cache errors."""
    pass


class StoreUnavailable(StaticCacheError):
    """The underlying cache backend or filesystem cannot be reached."""
    pass


class WriteFailure(StaticCacheError):
    """A captured response could not be persisted."""
    pass


class InvalidConfiguration(StaticCacheError):
    """The cache was configured with an unsupported combination of options."""
    pass
