"""Migration policy analysis - magnitude scores, trends, and mixture models."""

__version__ = "0.1.0"

from migpolicy.errors import FitError as FitError
from migpolicy.errors import LoadError as LoadError
from migpolicy.errors import SchemaError as SchemaError
from migpolicy.loader import clean as clean
from migpolicy.loader import load as load
from migpolicy.magnitude import compute_magnitude as compute_magnitude
from migpolicy.mixture import fit as fit
from migpolicy.mixture import select_model as select_model
from migpolicy.models import MixtureModel as MixtureModel
from migpolicy.models import PolicyRecord as PolicyRecord
from migpolicy.models import VarianceStructure as VarianceStructure
from migpolicy.summary import contingency as contingency
from migpolicy.summary import trend as trend
