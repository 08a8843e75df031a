from exposure_chain.chains.cache import LruCache, QueryCache, UserLookupCache
from exposure_chain.chains.discovery import ContactDiscovery, ContactHit
from exposure_chain.chains.paths import PathLedger, RecipientPaths, normalize_path, paths_equivalent
from exposure_chain.chains.traversal import ChainTraversal, TraversalResult
from exposure_chain.chains.windows import ExposureWindow, WindowPolicy, compute_window

__all__ = [
    "LruCache",
    "QueryCache",
    "UserLookupCache",
    "ContactDiscovery",
    "ContactHit",
    "PathLedger",
    "RecipientPaths",
    "normalize_path",
    "paths_equivalent",
    "ChainTraversal",
    "TraversalResult",
    "ExposureWindow",
    "WindowPolicy",
    "compute_window",
]
