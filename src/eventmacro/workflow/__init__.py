"""Workflow module: action model, interpolation, interpreter and router.

Only the leaf modules are re-exported here; import the interpreter from
``eventmacro.workflow.interpreter`` and the router from
``eventmacro.workflow.router``, since both depend on packages that
themselves import the action model.
"""

from .interpolation import interpolate, interpolate_value
from .models import Action, parse_action

__all__ = [
    "interpolate",
    "interpolate_value",
    "Action",
    "parse_action",
]
