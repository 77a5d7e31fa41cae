from farmescrow.inspector.inspector import AccountInspector

__all__ = ["AccountInspector"]
