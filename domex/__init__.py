"""
DOMEX Exchange Package

Core imports are lazily loaded so that importing ``domex.exceptions`` or
``domex.constants`` does not pull in the whole exchange engine:

    from domex.exchange import ExchangeStateManager, FixedPointAmount
    from domex.config import load_config
    from domex.exceptions import RateLimited
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'ExchangeStateManager':
        from .exchange import ExchangeStateManager
        return ExchangeStateManager
    elif name == 'FixedPointAmount':
        from .exchange import FixedPointAmount
        return FixedPointAmount
    elif name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module 'domex' has no attribute {name!r}")

__all__ = ['ExchangeStateManager', 'FixedPointAmount', 'load_config']
