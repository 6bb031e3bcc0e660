from .console import ConsoleColors, ConsoleFormatter

__all__ = ['ConsoleColors', 'ConsoleFormatter']
