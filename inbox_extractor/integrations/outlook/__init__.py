from .client import OutlookEmailSource

__all__ = ['OutlookEmailSource']
