from .alerting import Alert, AlertManager

__all__ = ["Alert", "AlertManager"]
