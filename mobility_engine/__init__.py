"""Clinical decision-support core for inpatient bedside-cycling mobility."""

# Configures loguru sinks from settings on first import
from mobility_engine.core import logger as _logger  # noqa: F401
