# mt_generalized_bloch/saturation/__init__.py
from .graham import graham_saturation_rate, GrahamSaturationTable, precompute_saturation_graham
from .r2sl import (
    rotation_model,
    R2slTable,
    precompute_R2sl,
    evaluate_R2sl_vector,
    evaluate_R2sl_vector_OCT
)

__all__ = [
    'graham_saturation_rate',
    'GrahamSaturationTable',
    'precompute_saturation_graham',
    'rotation_model',
    'R2slTable',
    'precompute_R2sl',
    'evaluate_R2sl_vector',
    'evaluate_R2sl_vector_OCT'
]
