from report_engine.schemas import reporting
from report_engine.schemas.reporting import *  # noqa: F401,F403

__all__ = list(reporting.__all__)
