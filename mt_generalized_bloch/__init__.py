# mt_generalized_bloch/__init__.py
# Main init for the library
import logging

from . import core
from . import saturation
from . import simulators

logging.getLogger(__name__).addHandler(logging.NullHandler())
