from .Problem import CallbackProblem, EquilibriumProblem
from .Structure_Truss import Bar2D, Structure_Truss

__all__ = [
    'EquilibriumProblem',
    'CallbackProblem',
    'Structure_Truss',
    'Bar2D',
]
