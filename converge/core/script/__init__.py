"""
Script compilation — checked fragments and control-flow forms.
"""

from converge.core.script.checked import checked, checked_from_script, compose

__all__ = ["checked", "checked_from_script", "compose"]
