"""PowerShell script rendering."""

from .emitter import ScriptEmitter, quote

__all__ = ['ScriptEmitter', 'quote']
