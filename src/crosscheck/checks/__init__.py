from .common import ConfiguredRule  # noqa: F401
from .collision import CollisionRule  # noqa: F401
from .ct import CTAndPatientRule, ContrastStructureRule, UserOriginMarkerRule  # noqa: F401
from .dose import DoseRule, ReferencePointRule  # noqa: F401
from .fields import (  # noqa: F401
    BeamEnergyRule,
    FieldGeometryRule,
    FieldNamesRule,
    FieldsGroup,
    SetupFieldsRule,
)
from .plan import CourseRule, OptimizationRule, PlanGroup, RootGroup  # noqa: F401
from .structures import FixationRule, PlanningStructuresRule  # noqa: F401
