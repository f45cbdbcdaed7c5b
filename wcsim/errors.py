class FixtureConfigError(ValueError):
    """Static tournament configuration cannot be simulated."""


class ThirdPlaceAssignmentError(RuntimeError):
    """No valid slot assignment found for the qualifying third-placed teams."""


class OverrideConflictError(RuntimeError):
    """A recorded result contradicts the participants resolved for a fixture."""


class SimulationCancelled(RuntimeError):
    """The run was aborted between trials; no report is produced."""


class MarketDataError(RuntimeError):
    """Market prices could not be fetched or parsed."""
